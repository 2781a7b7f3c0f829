# services/stage_pipeline.py
"""
Per-element production state machine over the element type's stage path.

    enter s1 -> statuses Inprogress -> all completed -> CompleteProduction(s_k)
             -> activity at s_{k+1} ... -> after s_n: activity stays completed,
                PrecastStock row is opened (stockyard receipt)
"""
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from errors import BadInput, Conflict, InvariantViolation, NotFound
from models import (
    COMPLETED,
    IN_PROGRESS,
    STATUS_FIELDS,
    Activity,
    CompleteProduction,
    Element,
    ElementType,
    PrecastStock,
    ProjectStage,
    utcnow,
)
from utils.stage_path import StagePath

logger = logging.getLogger(__name__)


def path_of(db: Session, element: Element) -> StagePath:
    et = db.get(ElementType, element.element_type_id)
    if et is None:
        raise NotFound("Element type not found", element_type_id=element.element_type_id)
    return StagePath.parse(et.stage_path).require()


def stage_defaults(db: Session, stage_id: int) -> Dict[str, int]:
    st = db.get(ProjectStage, stage_id)
    if st is None:
        raise InvariantViolation(f"Stage {stage_id} missing from project_stages")
    return {
        "assigned_to": st.assigned_to or 0,
        "qc_id": st.qc_id or 0,
        "paper_id": st.paper_id or 0,
    }


def _put_at_stage(activity: Activity, stage_id: int, defaults: Dict[str, int]) -> None:
    activity.stage_id = stage_id
    for f in STATUS_FIELDS:
        setattr(activity, f, IN_PROGRESS)
    activity.assigned_to = defaults["assigned_to"]
    activity.qc_id = defaults["qc_id"]
    activity.paper_id = defaults["paper_id"]


def start_production(db: Session, element: Element) -> Activity:
    """Entry: activity at s1, all statuses Inprogress, completed=false."""
    if element.disable:
        raise BadInput("Element is disabled", element_id=element.id)
    if element.instage or db.query(Activity).filter(Activity.element_id == element.id).first():
        raise Conflict("Element is already in production", element_id=element.id)

    first = path_of(db, element).first()
    act = Activity(element_id=element.id, project_id=element.project_id, completed=False)
    _put_at_stage(act, first, stage_defaults(db, first))
    db.add(act)
    element.instage = True
    db.flush()
    return act


def update_statuses(
    db: Session,
    element: Element,
    changes: Dict[str, str],
    *,
    user_id: Optional[int] = None,
) -> Dict[str, object]:
    """Apply status sub-field changes; advance when every field is completed."""
    if element.disable:
        raise BadInput("Element is disabled", element_id=element.id)
    act =db.query(Activity).filter(Activity.element_id == element.id).with_for_update().first()
    if act is None:
        raise NotFound("Element has no activity", element_id=element.id)
    if act.completed:
        raise BadInput("Activity already completed", element_id=element.id)

    for field, value in changes.items():
        if field not in STATUS_FIELDS:
            raise BadInput(f"Unknown status field: {field}")
        if value not in (IN_PROGRESS, COMPLETED):
            raise BadInput(f"Invalid status value: {value}")
        setattr(act, field, value)
    db.flush()

    if not act.all_completed():
        return {"advanced": False, "stage_id": act.stage_id, "activity": act}
    return advance(db, element, act, user_id=user_id)


def advance(db: Session, element: Element, act: Activity, *, user_id: Optional[int] = None) -> Dict[str, object]:
    path = path_of(db, element)
    current = act.stage_id
    if not path.contains(current):
        raise InvariantViolation(f"Activity stage {current} not on path {path.serialise()}")

    db.add(CompleteProduction(
        element_id=element.id,
        project_id=element.project_id,
        stage_id=current,
        started_at=utcnow(),
        status=COMPLETED,
        user_id=user_id,
    ))
    act.completed = True
    db.flush()

    nxt = path.next_after(current)
    if nxt is None:
        stock = open_stock(db, element)
        logger.info("element %s finished production (stock %s)", element.id, stock.id)
        return {"advanced": True, "completed_stage": current, "stage_id": None, "activity": act, "stock": stock}

    # one activity row per element: the same row moves on to the next stage
    _put_at_stage(act, nxt, stage_defaults(db, nxt))
    act.completed = False
    db.flush()
    return {"advanced": True, "completed_stage": current, "stage_id": nxt, "activity": act}


def open_stock(db: Session, element: Element) -> PrecastStock:
    stock = db.query(PrecastStock).filter(PrecastStock.element_id == element.id).first()
    if stock is not None:
        return stock
    now = utcnow()
    stock = PrecastStock(
        element_id=element.id,
        element_type_id=element.element_type_id,
        project_id=element.project_id,
        target_location=element.target_location,
        stockyard=True,
        production_date=now,
    )
    db.add(stock)
    db.flush()
    return stock


def reset_in_flight(db: Session, element_type: ElementType) -> int:
    """Send unfinished activities that moved past s1 back to s1 with s1's defaults."""
    path = StagePath.parse(element_type.stage_path).require()
    first = path.first()
    defaults = stage_defaults(db, first)
    rows = (
        db.query(Activity)
          .join(Element, Element.id == Activity.element_id)
          .filter(
              Element.element_type_id == element_type.id,
              Activity.stage_id != first,
              Activity.completed.is_(False),
          )
          .all()
    )
    for act in rows:
        _put_at_stage(act, first, defaults)
    db.flush()
    if rows:
        logger.info("element_type %s: reset %d in-flight activities to stage %s", element_type.id, len(rows), first)
    return len(rows)


def lifecycle(db: Session, element: Element) -> Dict[str, object]:
    done = (
        db.query(CompleteProduction)
          .filter(CompleteProduction.element_id == element.id)
          .order_by(CompleteProduction.started_at, CompleteProduction.id)
          .all()
    )
    act = db.query(Activity).filter(Activity.element_id == element.id).first()
    return {"completed_stages": done, "activity": act}
