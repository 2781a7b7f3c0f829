from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from schemas import (
    BomLineOut,
    DrawingOut,
    DrawingRevisionOut,
    ElementTypeCreate,
    ElementTypeOut,
    ElementTypeUpdate,
    HierarchyQuantityOut,
)
from services import element_types as svc
from services.activity_projector import ActivityEvent, ActivityProjector, get_projector
from utils.db_context import QueryTier, deadline
from utils.pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/element-types", tags=["element-types"])

CONTEXT = "Element Type"


def _actor(ident: Identity) -> str:
    return ident.display_name or ident.host_name


# ===================== list / read =====================
@router.get("")
def list_element_types(
    project_id: int = Query(...),
    q: Optional[str] = Query(None, description="search code / name"),
    params: PageParams = Depends(page_params),
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    query = svc.list_query(db, project_id, q)
    return paginate(query, params, lambda et: ElementTypeOut.model_validate(et).model_dump())


@router.get("/{type_id}")
def get_element_type(
    type_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    d = svc.element_type_detail(db, type_id)
    out = ElementTypeOut.model_validate(d["element_type"]).model_dump()
    out["hierarchy"] = [HierarchyQuantityOut.model_validate(h) for h in d["hierarchy"]]
    out["drawings"] = [
        DrawingOut(
            **{k: getattr(x["drawing"], k) for k in ("id", "drawing_type_id", "current_version", "file", "comments")},
            revisions=[DrawingRevisionOut.model_validate(r) for r in x["revisions"]],
        )
        for x in d["drawings"]
    ]
    out["bom_lines"] = [BomLineOut.model_validate(b) for b in d["bom_lines"]]
    out["element_counts"] = d["element_counts"]
    return out


# ===================== mutations =====================
@router.post("", status_code=201)
def create_element_type(
    payload: ElementTypeCreate,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    et = svc.create_element_type(db, payload, actor=_actor(ident))
    out = {
        "message": "Element Type, Drawings, Element, BOM created successfully",
        "id": et.id,
        "element_type_version": et.version_code,
        "total_count_element": et.total_count_element,
    }
    db.commit()

    out["warnings"] = projector.publish(ActivityEvent(
        event_context=CONTEXT,
        event_name="Create",
        description=f"Created element type {out['id']} ({payload.element_type})",
        identity=ident,
        project_id=payload.project_id,
        notify_message=f"New element type created: {payload.element_type_name or payload.element_type}",
        action_path=f"/project/{payload.project_id}/element",
    ))
    return out


@router.put("/{type_id}")
def update_element_type(
    type_id: int,
    patch: ElementTypeUpdate,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    result = svc.update_element_type(db, type_id, patch, actor=_actor(ident))
    project_id = svc.get_element_type(db, type_id).project_id
    db.commit()

    result["warnings"] = projector.publish(ActivityEvent(
        event_context=CONTEXT,
        event_name="PUT",
        description=f"Updated element type {type_id} to {result['element_type_version']}",
        identity=ident,
        project_id=project_id,
        notify_message=f"Element type updated: {type_id} ({result['element_type_version']})",
        action_path=f"/project/{project_id}/element",
    ))
    return result


@router.delete("/{type_id}")
def delete_element_type(
    type_id: int,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    result = svc.delete_element_type(db, type_id, actor=_actor(ident))
    db.commit()

    result["message"] = "Element type deleted"
    result["warnings"] = projector.publish(ActivityEvent(
        event_context=CONTEXT,
        event_name="Delete",
        description=f"Deleted element type {type_id}",
        identity=ident,
        project_id=result["project_id"],
        notify_message=f"Element type deleted: {type_id}",
        action_path=f"/project/{result['project_id']}/element",
    ))
    return result
