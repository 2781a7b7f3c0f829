# services/revision_store.py
"""
Append-only history of drawings and BOM lines.

Everything here only INSERTs; the ORM guards in models.py refuse
updates and deletes on both tables.
"""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import get_settings
from errors import InvariantViolation
from models import (
    Drawing,
    DrawingRevision,
    ElementType,
    ElementTypeBom,
    ElementTypeRevisionBom,
    utcnow,
)

logger = logging.getLogger(__name__)


def _same_as_latest(db: Session, line: ElementTypeBom) -> bool:
    last = (
        db.query(ElementTypeRevisionBom)
          .filter(ElementTypeRevisionBom.element_type_bom_id == line.id)
          .order_by(ElementTypeRevisionBom.id.desc())
          .first()
    )
    if last is None:
        return False
    return (
        last.product_id == line.product_id
        and last.quantity == line.quantity
        and (last.unit or "") == (line.unit or "")
        and last.rate == line.rate
    )


def snapshot_bom(db: Session, element_type: ElementType, actor: str) -> List[int]:
    """
    Copy every current BOM line of the type into element_type_revision_bom.
    Must run before any BOM mutation. Returns the new revision ids in line order.
    """
    dedup = get_settings().bom_snapshot_dedup
    lines = (
        db.query(ElementTypeBom)
          .filter(ElementTypeBom.element_type_id == element_type.id)
          .order_by(ElementTypeBom.id)
          .all()
    )
    now = utcnow()
    snaps: List[ElementTypeRevisionBom] = []
    for line in lines:
        if dedup and _same_as_latest(db, line):
            continue
        snap = ElementTypeRevisionBom(
            element_type_bom_id=line.id,
            element_type_id=element_type.id,
            project_id=element_type.project_id,
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit=line.unit,
            rate=line.rate,
            changed_at=now,
            changed_by=actor,
        )
        db.add(snap)
        snaps.append(snap)
    # one flush: either every snapshot row lands or the caller's transaction aborts
    db.flush()
    logger.info("element_type %s: %d BOM snapshot rows", element_type.id, len(snaps))
    return [s.id for s in snaps]


def latest_drawing_version(db: Session, drawing_id: int) -> int:
    return db.query(func.coalesce(func.max(DrawingRevision.version), 0)).filter(
        DrawingRevision.parent_drawing_id == drawing_id
    ).scalar() or 0


def append_drawing_revision(
    db: Session,
    drawing: Drawing,
    *,
    file: str,
    comments: Optional[str],
    actor: str,
    version: Optional[int] = None,
) -> int:
    """Append a revision and move the drawing's current pointer to it. Versions strictly increase."""
    latest = latest_drawing_version(db, drawing.id)
    if version is None:
        version = latest + 1
    if version <= latest:
        raise InvariantViolation(
            f"drawing {drawing.id}: version {version} is not after {latest}"
        )

    rev = DrawingRevision(
        parent_drawing_id=drawing.id,
        project_id=drawing.project_id,
        element_type_id=drawing.element_type_id,
        drawing_type_id=drawing.drawing_type_id,
        version=version,
        file=file,
        comments=comments,
        created_by=actor,
    )
    db.add(rev)

    drawing.current_version = version
    drawing.file = file
    drawing.comments = comments
    drawing.updated_by = actor
    db.flush()
    return rev.id


def list_drawing_revisions(db: Session, drawing_id: int) -> List[DrawingRevision]:
    return (
        db.query(DrawingRevision)
          .filter(DrawingRevision.parent_drawing_id == drawing_id)
          .order_by(DrawingRevision.version)
          .all()
    )


def list_bom_revisions(db: Session, element_type_id: int) -> List[ElementTypeRevisionBom]:
    return (
        db.query(ElementTypeRevisionBom)
          .filter(ElementTypeRevisionBom.element_type_id == element_type_id)
          .order_by(ElementTypeRevisionBom.id)
          .all()
    )
