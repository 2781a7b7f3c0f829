# services/element_types.py
"""
Element type aggregate: the type row plus its hierarchy quantities, drawings,
BOM lines and stage path. Every function runs inside the caller's transaction
and only flushes; the router commits once.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import exists, func, or_
from sqlalchemy.orm import Session

from config import get_settings
from errors import BadInput, Conflict, DependencyFailure, NotFound
from models import (
    Drawing,
    DrawingType,
    Element,
    ElementType,
    ElementTypeBom,
    ElementTypeHierarchyQuantity,
    InvBom,
    Project,
    ProjectStage,
)
from services import element_ledger, hierarchy_reconciler, revision_store, stage_pipeline
from utils.code_generator import next_version_code, random_id
from utils.stage_path import StagePath

logger = logging.getLogger(__name__)

GEOMETRY = ("thickness", "length", "height", "width", "area", "volume", "mass")
ID_ATTEMPTS = 5


# ---------- helpers ----------
def _free_id(db: Session, model) -> int:
    for _ in range(ID_ATTEMPTS):
        candidate = random_id()
        if db.get(model, candidate) is None:
            return candidate
    raise DependencyFailure(f"Failed to allocate a unique id for {model.__tablename__}")


def _density(mass, volume) -> Decimal:
    mass = Decimal(mass or 0)
    volume = Decimal(volume or 0)
    if volume > 0:
        return (mass / volume).quantize(Decimal("0.0001"))
    return Decimal("0")


def _validate_stage_path(db: Session, project_id: int, stage_ids: List[int]) -> StagePath:
    if not stage_ids:
        raise BadInput("stage_path is required and must not be empty")
    if len(set(stage_ids)) != len(stage_ids):
        raise BadInput("stage_path must not repeat a stage", stage_path=stage_ids)
    found = {
        sid for (sid,) in db.query(ProjectStage.id)
        .filter(ProjectStage.project_id == project_id, ProjectStage.id.in_(stage_ids))
        .all()
    }
    missing = [s for s in stage_ids if s not in found]
    if missing:
        raise BadInput("Unknown project stages in stage_path", stage_ids=missing)
    return StagePath(stage_ids)


def _check_drawing_type(db: Session, project_id: int, drawing_type_id: int) -> None:
    dt = db.get(DrawingType, drawing_type_id)
    if dt is None or dt.project_id != project_id:
        raise BadInput(f"Drawing type {drawing_type_id} not found for project", drawing_type_id=drawing_type_id)


def _code_taken(db: Session, project_id: int, code: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(ElementType.id).filter(
        ElementType.project_id == project_id,
        func.lower(ElementType.code) == code.lower(),
    )
    if exclude_id is not None:
        q = q.filter(ElementType.id != exclude_id)
    return db.query(q.exists()).scalar()


def get_element_type(db: Session, type_id: int, *, for_update: bool = False) -> ElementType:
    q = db.query(ElementType).filter(ElementType.id == type_id)
    if for_update:
        q = q.with_for_update()
    et = q.first()
    if et is None:
        raise NotFound("Element type not found", element_type_id=type_id)
    return et


# ---------- drawings / BOM ----------
def _new_drawing(db: Session, et: ElementType, d_in, actor: str) -> int:
    """Create a drawing plus its first revision; returns the revision id."""
    drawing = Drawing(
        id=_free_id(db, Drawing),
        project_id=et.project_id,
        element_type_id=et.id,
        drawing_type_id=d_in.drawing_type_id,
        current_version=0,
        created_by=actor,
        updated_by=actor,
    )
    db.add(drawing)
    db.flush()
    return revision_store.append_drawing_revision(
        db, drawing, file=d_in.file, comments=d_in.comments, actor=actor, version=1
    )


def _revise_drawing(db: Session, et: ElementType, d_in, actor: str) -> int:
    _check_drawing_type(db, et.project_id, d_in.drawing_type_id)
    drawing = (
        db.query(Drawing)
          .filter(Drawing.element_type_id == et.id, Drawing.drawing_type_id == d_in.drawing_type_id)
          .first()
    )
    if drawing is None:
        return _new_drawing(db, et, d_in, actor)
    return revision_store.append_drawing_revision(
        db, drawing, file=d_in.file, comments=d_in.comments, actor=actor
    )


def _insert_bom(db: Session, et: ElementType, products: Iterable, actor: str) -> List[ElementTypeBom]:
    lines = []
    for p in products:
        product = db.get(InvBom, p.product_id)
        if product is None:
            raise BadInput(f"Product ID {p.product_id} not found in inventory", product_id=p.product_id)
        line = ElementTypeBom(
            element_type_id=et.id,
            project_id=et.project_id,
            product_id=product.id,
            product_name=product.product_name,
            quantity=p.quantity,
            unit=p.unit or product.unit,
            rate=p.rate if p.rate is not None else product.rate,
            created_by=actor,
            updated_by=actor,
        )
        db.add(line)
        lines.append(line)
    db.flush()
    return lines


def _replace_bom(db: Session, et: ElementType, products: Iterable, actor: str) -> List[ElementTypeBom]:
    """Callers snapshot first."""
    db.query(ElementTypeBom).filter(ElementTypeBom.element_type_id == et.id).delete(synchronize_session=False)
    db.flush()
    return _insert_bom(db, et, products, actor)


# ---------- create ----------
def create_element_type(db: Session, payload, *, actor: str) -> ElementType:
    if db.get(Project, payload.project_id) is None:
        raise NotFound("Project not found", project_id=payload.project_id)
    code = payload.element_type.strip()
    if not code:
        raise BadInput("element_type is required")
    if _code_taken(db, payload.project_id, code):
        raise Conflict(f"Element type '{code}' already exists in this project")

    path = _validate_stage_path(db, payload.project_id, payload.stage_ids())
    for d in payload.drawings:
        _check_drawing_type(db, payload.project_id, d.drawing_type_id)

    et = ElementType(
        id=_free_id(db, ElementType),
        project_id=payload.project_id,
        code=code,
        name=payload.element_type_name or "",
        version_code=next_version_code(""),
        stage_path=path,
        total_count_element=0,
        created_by=actor,
        updated_by=actor,
    )
    for f in GEOMETRY:
        setattr(et, f, getattr(payload, f) or Decimal("0"))
    et.density = _density(et.mass, et.volume)
    db.add(et)
    db.flush()

    for d in payload.drawings:
        _new_drawing(db, et, d, actor)

    hierarchy_reconciler.reconcile(db, et, payload.hierarchy_quantity, actor=actor)
    _insert_bom(db, et, payload.products, actor)

    logger.info("element_type %s (%s) created with %s elements", et.id, et.code, et.total_count_element)
    return et


# ---------- update ----------
def _apply_scalars(db: Session, et: ElementType, patch) -> List[str]:
    changed = []
    if patch.element_type and patch.element_type.strip() and patch.element_type.strip() != et.code:
        code = patch.element_type.strip()
        if _code_taken(db, et.project_id, code, exclude_id=et.id):
            raise Conflict(f"Element type '{code}' already exists in this project")
        et.code = code
        changed.append("element_type")
    if patch.element_type_name:
        et.name = patch.element_type_name
        changed.append("element_type_name")
    for f in GEOMETRY:
        v = getattr(patch, f)
        if v is not None and v != 0:
            setattr(et, f, v)
            changed.append(f)
    et.density = _density(et.mass, et.volume)
    return changed


def update_element_type(db: Session, type_id: int, patch, *, actor: str) -> Dict[str, Any]:
    """
    Single critical section per type (row lock):
    version -> scalars -> hierarchy -> BOM snapshot (always) -> BOM replace
    -> drawing revisions -> repin -> disable -> reset.
    """
    et = get_element_type(db, type_id, for_update=True)

    production = db.query(
        exists().where(Element.element_type_id == et.id, Element.instage.is_(True))
    ).scalar()

    et.version_code = next_version_code(et.version_code)
    changed = _apply_scalars(db, et, patch)

    stage_ids = patch.stage_ids()
    if stage_ids:
        et.stage_path = _validate_stage_path(db, et.project_id, stage_ids)
        changed.append("stage_path")
    et.updated_by = actor
    db.flush()

    reconciliation = []
    if patch.hierarchy_quantity:
        reconciliation = hierarchy_reconciler.reconcile(db, et, patch.hierarchy_quantity, actor=actor)

    bom_revision_ids = revision_store.snapshot_bom(db, et, actor)
    if patch.products is not None:
        _replace_bom(db, et, patch.products, actor)
        changed.append("products")

    drawing_revision_ids = [_revise_drawing(db, et, d, actor) for d in (patch.drawings or [])]

    repinned = element_ledger.repin_finished(
        db, et,
        drawing_revision_id=drawing_revision_ids[0] if drawing_revision_ids else None,
        bom_revision_id=bom_revision_ids[0] if bom_revision_ids else None,
    )
    disabled = element_ledger.disable_finished(db, et)
    reset = stage_pipeline.reset_in_flight(db, et)

    logger.info(
        "element_type %s -> %s (changed=%s repinned=%s disabled=%s reset=%s)",
        et.id, et.version_code, changed, repinned, disabled, reset,
    )
    return {
        "message": "Element type updated",
        "element_type_id": et.id,
        "element_type_version": et.version_code,
        "production": bool(production),
        "changed": changed,
        "hierarchy": reconciliation,
        "total_count_element": et.total_count_element,
        "bom_revision_ids": bom_revision_ids,
        "drawing_revision_ids": drawing_revision_ids,
        "repinned": repinned,
        "disabled": disabled,
        "reset": reset,
    }


# ---------- delete ----------
def delete_element_type(db: Session, type_id: int, *, actor: str) -> Dict[str, Any]:
    et = get_element_type(db, type_id, for_update=True)
    policy = get_settings().element_type_delete_policy
    out = {"element_type_id": et.id, "project_id": et.project_id, "policy": policy}

    if policy == "cascade":
        revision_store.snapshot_bom(db, et, actor)
        out["bom_lines"] = db.query(ElementTypeBom).filter(
            ElementTypeBom.element_type_id == et.id).delete(synchronize_session=False)
        out["hierarchy_rows"] = db.query(ElementTypeHierarchyQuantity).filter(
            ElementTypeHierarchyQuantity.element_type_id == et.id).delete(synchronize_session=False)
        out["drawings"] = db.query(Drawing).filter(
            Drawing.element_type_id == et.id).delete(synchronize_session=False)
        out["elements_disabled"] = db.query(Element).filter(
            Element.element_type_id == et.id, Element.disable.is_(False)
        ).update({Element.disable: True}, synchronize_session=False)

    db.delete(et)
    db.flush()
    logger.info("element_type %s deleted (policy=%s)", type_id, policy)
    return out


# ---------- read ----------
def element_type_detail(db: Session, type_id: int) -> Dict[str, Any]:
    et = get_element_type(db, type_id)
    StagePath.parse(et.stage_path).require()

    hierarchy = (
        db.query(ElementTypeHierarchyQuantity)
          .filter(ElementTypeHierarchyQuantity.element_type_id == et.id)
          .order_by(ElementTypeHierarchyQuantity.hierarchy_id)
          .all()
    )
    drawings = (
        db.query(Drawing)
          .filter(Drawing.element_type_id == et.id)
          .order_by(Drawing.drawing_type_id)
          .all()
    )
    bom = (
        db.query(ElementTypeBom)
          .filter(ElementTypeBom.element_type_id == et.id)
          .order_by(ElementTypeBom.id)
          .all()
    )
    # per-location counts (live / disabled / in stage)
    per_location: Dict[int, Dict[str, int]] = {}
    for el in db.query(Element).filter(Element.element_type_id == et.id).all():
        c = per_location.setdefault(el.target_location, {"total": 0, "disabled": 0, "instage": 0})
        c["total"] += 1
        if el.disable:
            c["disabled"] += 1
        if el.instage:
            c["instage"] += 1

    return {
        "element_type": et,
        "hierarchy": hierarchy,
        "drawings": [
            {"drawing": d, "revisions": revision_store.list_drawing_revisions(db, d.id)} for d in drawings
        ],
        "bom_lines": bom,
        "element_counts": [
            {"hierarchy_id": loc, **c, **element_ledger.tower_and_floor(db, loc)}
            for loc, c in sorted(per_location.items())
        ],
    }


def list_query(db: Session, project_id: int, q: Optional[str] = None):
    query = db.query(ElementType).filter(ElementType.project_id == project_id)
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(ElementType.code.ilike(like), ElementType.name.ilike(like)))
    return query.order_by(ElementType.code.asc())
