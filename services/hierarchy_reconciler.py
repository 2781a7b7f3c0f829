# services/hierarchy_reconciler.py
import logging
from typing import Dict, Iterable, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import BadInput
from models import ElementType, ElementTypeHierarchyQuantity, Precast
from services import element_ledger

logger = logging.getLogger(__name__)


def naming_convention_for(db: Session, hierarchy_id: int, project_id: int) -> str:
    node = db.get(Precast, hierarchy_id)
    if node is None or node.project_id != project_id:
        raise BadInput(f"HierarchyId {hierarchy_id} not found in precast", hierarchy_id=hierarchy_id)
    return node.naming_convention or ""


def reconcile(
    db: Session,
    element_type: ElementType,
    requested: Iterable,
    *,
    actor: str,
) -> List[Dict[str, int]]:
    """
    Bring elements in line with the requested {hierarchy_id -> quantity}.
    delta > 0 creates, delta < 0 removes the newest ids, 0 leaves the location alone.
    Hierarchies not mentioned keep their rows. Sets total_count_element to the new sum.
    """
    summary = []
    for hq in requested:
        hierarchy_id, desired = hq.hierarchy_id, hq.quantity
        if hierarchy_id <= 0:
            raise BadInput("hierarchy_id must be > 0", hierarchy_id=hierarchy_id)
        naming = naming_convention_for(db, hierarchy_id, element_type.project_id)

        row = (
            db.query(ElementTypeHierarchyQuantity)
              .filter(
                  ElementTypeHierarchyQuantity.element_type_id == element_type.id,
                  ElementTypeHierarchyQuantity.hierarchy_id == hierarchy_id,
              )
              .first()
        )
        current = row.quantity if row else 0
        delta = desired - current

        created = removed = 0
        if delta > 0:
            created = len(element_ledger.create_elements(
                db, element_type,
                hierarchy_id=hierarchy_id,
                naming_convention=naming,
                quantity=delta,
                actor=actor,
            ))
        elif delta < 0:
            deleted, tombstoned = element_ledger.remove_newest(db, element_type.id, hierarchy_id, -delta)
            removed = deleted + tombstoned

        if row is None:
            db.add(ElementTypeHierarchyQuantity(
                element_type_id=element_type.id,
                project_id=element_type.project_id,
                hierarchy_id=hierarchy_id,
                quantity=desired,
                naming_convention=naming,
            ))
        else:
            row.quantity = desired
            row.naming_convention = naming
        db.flush()

        if delta:
            logger.info(
                "element_type %s hierarchy %s: %s -> %s (created=%s removed=%s)",
                element_type.id, hierarchy_id, current, desired, created, removed,
            )
        summary.append({
            "hierarchy_id": hierarchy_id,
            "previous": current,
            "requested": desired,
            "created": created,
            "removed": removed,
        })

    element_type.total_count_element = int(
        db.query(func.coalesce(func.sum(ElementTypeHierarchyQuantity.quantity), 0))
          .filter(ElementTypeHierarchyQuantity.element_type_id == element_type.id)
          .scalar()
    )
    db.flush()
    return summary
