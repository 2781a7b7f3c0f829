# services/element_ledger.py
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import exists, or_
from sqlalchemy.orm import Session

from errors import NotFound
from models import (
    Activity,
    CompleteProduction,
    Element,
    ElementInvoiceHistory,
    ElementType,
    Precast,
    PrecastStock,
)
from utils.code_generator import element_code, element_sequence

logger = logging.getLogger(__name__)


def next_sequence(db: Session, element_type_id: int) -> int:
    """Highest sequence used by the type (disabled rows included); deleted rows may leave gaps."""
    codes = db.query(Element.element_code).filter(Element.element_type_id == element_type_id).all()
    return max((element_sequence(c) for (c,) in codes), default=0)


def create_elements(
    db: Session,
    element_type: ElementType,
    *,
    hierarchy_id: int,
    naming_convention: str,
    quantity: int,
    actor: str,
) -> List[Element]:
    if quantity <= 0:
        return []
    start = next_sequence(db, element_type.id)
    created = []
    for i in range(1, quantity + 1):
        el = Element(
            element_type_id=element_type.id,
            project_id=element_type.project_id,
            element_code=element_code(element_type.code, naming_convention, start + i),
            element_name=element_type.name,
            target_location=hierarchy_id,
            element_type_version=element_type.version_code,
            instage=False,
            disable=False,
            created_by=actor,
        )
        db.add(el)
        created.append(el)
    db.flush()
    return created


def has_history(db: Session, element_id: int) -> bool:
    """Referenced by production, stock, invoice history or a live activity."""
    return db.query(
        or_(
            exists().where(CompleteProduction.element_id == element_id),
            exists().where(ElementInvoiceHistory.element_id == element_id),
            exists().where(PrecastStock.element_id == element_id),
            exists().where(Activity.element_id == element_id),
        )
    ).scalar()


def remove_newest(db: Session, element_type_id: int, hierarchy_id: int, count: int) -> Tuple[int, int]:
    """
    Drop the ``count`` newest live elements at a location.
    Elements with history are tombstoned (disable=true), the rest are deleted.
    Returns (deleted, tombstoned).
    """
    if count <= 0:
        return 0, 0
    victims = (
        db.query(Element)
          .filter(
              Element.element_type_id == element_type_id,
              Element.target_location == hierarchy_id,
              Element.disable.is_(False),
          )
          .order_by(Element.id.desc())
          .limit(count)
          .all()
    )
    deleted = tombstoned = 0
    for el in victims:
        if has_history(db, el.id):
            el.disable = True
            tombstoned += 1
        else:
            db.delete(el)
            deleted += 1
    db.flush()
    return deleted, tombstoned


def repin_finished(
    db: Session,
    element_type: ElementType,
    *,
    drawing_revision_id: Optional[int],
    bom_revision_id: Optional[int],
) -> int:
    """
    Pin elements that went through production against the revisions created by this update:
    in stage, activity completed, no drawing revision pinned yet.
    """
    if drawing_revision_id is None and bom_revision_id is None:
        return 0
    affected = (
        db.query(Element)
          .join(Activity, Activity.element_id == Element.id)
          .filter(
              Element.element_type_id == element_type.id,
              Element.project_id == element_type.project_id,
              Element.instage.is_(True),
              Activity.completed.is_(True),
              Element.drawing_revision_id.is_(None),
          )
          .all()
    )
    for el in affected:
        if drawing_revision_id is not None:
            el.drawing_revision_id = drawing_revision_id
        if bom_revision_id is not None and el.bom_revision_id is None:
            el.bom_revision_id = bom_revision_id
    db.flush()
    return len(affected)


def disable_finished(db: Session, element_type: ElementType) -> int:
    """In stage AND (no activity OR activity completed) -> disable."""
    rows = (
        db.query(Element)
          .outerjoin(Activity, Activity.element_id == Element.id)
          .filter(
              Element.element_type_id == element_type.id,
              Element.instage.is_(True),
              Element.disable.is_(False),
              or_(Activity.id.is_(None), Activity.completed.is_(True)),
          )
          .all()
    )
    for el in rows:
        el.disable = True
    db.flush()
    if rows:
        logger.info("element_type %s: disabled %d finished elements", element_type.id, len(rows))
    return len(rows)


def get_element(db: Session, element_id: int) -> Element:
    el = db.get(Element, element_id)
    if not el:
        raise NotFound("Element not found", element_id=element_id)
    return el


def tower_and_floor(db: Session, hierarchy_id: int) -> Dict[str, object]:
    """A node with a parent is a floor of that tower; otherwise it is a tower ("common" floor)."""
    node = db.get(Precast, hierarchy_id)
    if node is None:
        return {"tower_id": None, "tower_name": None, "floor_id": None, "floor_name": None}
    if node.parent_id:
        tower = db.get(Precast, node.parent_id)
        return {
            "tower_id": node.parent_id,
            "tower_name": tower.name if tower else None,
            "floor_id": node.id,
            "floor_name": node.name,
        }
    return {"tower_id": node.id, "tower_name": node.name, "floor_id": None, "floor_name": "common"}
