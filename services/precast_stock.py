# services/precast_stock.py
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from errors import BadInput, NotFound
from models import Element, PrecastStock, utcnow

logger = logging.getLogger(__name__)

STOCKYARD = "Stockyard"
IN_REQUEST = "In request"
DISPATCHED = "Dispatched"
RECEIVED = "Received at site"
ERECTED = "Erected"
NOT_IN_STOCK = "Not in stock"

STATUS_ORDER = (STOCKYARD, IN_REQUEST, DISPATCHED, RECEIVED, ERECTED)


def stock_status(s: PrecastStock) -> str:
    """Checked from the furthest state back so exactly one name applies."""
    if s.erected and s.receive_in_erection:
        return ERECTED
    if s.receive_in_erection and not s.erected:
        return RECEIVED
    if s.dispatch_status and not s.receive_in_erection:
        return DISPATCHED
    if (not s.dispatch_status and s.order_by_erection
            and not s.receive_in_erection and not s.erected):
        return IN_REQUEST
    if s.stockyard and not s.order_by_erection:
        return STOCKYARD
    return NOT_IN_STOCK


def get_stock(db: Session, element_id: int) -> PrecastStock:
    s = db.query(PrecastStock).filter(PrecastStock.element_id == element_id).first()
    if s is None:
        raise NotFound("Element is not in stock", element_id=element_id)
    return s


def _load_many(db: Session, element_ids: Iterable[int]) -> List[PrecastStock]:
    ids = list(dict.fromkeys(element_ids))
    if not ids:
        raise BadInput("element_ids is required")
    rows = (
        db.query(PrecastStock)
          .filter(PrecastStock.element_id.in_(ids))
          .with_for_update()
          .all()
    )
    found = {r.element_id for r in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFound("Elements not in stock", element_ids=missing)
    return rows


def _expect(rows: List[PrecastStock], wanted: str) -> None:
    wrong = [r.element_id for r in rows if stock_status(r) != wanted]
    if wrong:
        raise BadInput(f"Elements are not in '{wanted}'", element_ids=wrong)


def request_erection(db: Session, element_ids: Iterable[int]) -> List[PrecastStock]:
    rows = _load_many(db, element_ids)
    _expect(rows, STOCKYARD)
    for r in rows:
        r.order_by_erection = True
    db.flush()
    return rows


def dispatch(
    db: Session,
    element_ids: Iterable[int],
    *,
    dispatch_start=None,
    dispatch_end=None,
) -> List[PrecastStock]:
    rows = _load_many(db, element_ids)
    _expect(rows, IN_REQUEST)
    now = utcnow()
    for r in rows:
        r.dispatch_status = True
        r.dispatch_start = dispatch_start or now
        r.dispatch_end = dispatch_end or now
    db.flush()
    return rows


def receive_at_site(db: Session, element_ids: Iterable[int]) -> List[PrecastStock]:
    rows = _load_many(db, element_ids)
    _expect(rows, DISPATCHED)
    for r in rows:
        r.receive_in_erection = True
    db.flush()
    return rows


def erect(db: Session, element_ids: Iterable[int]) -> List[PrecastStock]:
    rows = _load_many(db, element_ids)
    _expect(rows, RECEIVED)
    for r in rows:
        r.erected = True
    db.flush()
    return rows


def set_flags(db: Session, element_id: int, flags: Dict[str, Optional[bool]]) -> PrecastStock:
    """Direct flag edit (corrections). The erected => receive_in_erection guard still applies."""
    s = get_stock(db, element_id)
    for k, v in flags.items():
        if v is not None:
            setattr(s, k, bool(v))
    if s.erected and not s.receive_in_erection:
        raise BadInput("erected requires receive_in_erection", element_id=element_id)
    db.flush()
    return s


def status_counts(db: Session, project_id: int, element_type_id: Optional[int] = None) -> List[Dict[str, object]]:
    """Counts per element type x location x status, computed fresh per call."""
    q = (
        db.query(Element, PrecastStock)
          .join(PrecastStock, PrecastStock.element_id == Element.id)
          .filter(Element.project_id == project_id)
    )
    if element_type_id is not None:
        q = q.filter(Element.element_type_id == element_type_id)

    buckets: Dict[tuple, Dict[str, int]] = defaultdict(lambda: {name: 0 for name in STATUS_ORDER})
    for el, stock in q.all():
        name = stock_status(stock)
        if name == NOT_IN_STOCK:
            continue
        buckets[(el.element_type_id, el.target_location)][name] += 1

    out = []
    for (type_id, location), counts in sorted(buckets.items()):
        out.append({"element_type_id": type_id, "target_location": location, "counts": counts})
    return out
