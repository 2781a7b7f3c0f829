from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from schemas import ActivityOut, ActivityStatusUpdate, PrecastStockOut
from services import element_ledger, stage_pipeline
from services.activity_projector import ActivityEvent, ActivityProjector, get_projector
from utils.db_context import deadline

router = APIRouter(prefix="/production", tags=["production"])


@router.post("/elements/{element_id}/start", status_code=201)
def start_production(
    element_id: int,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    el = element_ledger.get_element(db, element_id)
    act = stage_pipeline.start_production(db, el)
    out = {"activity": ActivityOut.model_validate(act)}
    project_id = el.project_id
    db.commit()

    out["warnings"] = projector.publish(ActivityEvent(
        event_context="Production",
        event_name="Start",
        description=f"Element {element_id} entered stage {out['activity'].stage_id}",
        identity=ident,
        project_id=project_id,
    ))
    return out


@router.put("/elements/{element_id}/status")
def update_status(
    element_id: int,
    payload: ActivityStatusUpdate,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    el = element_ledger.get_element(db, element_id)
    changes = payload.model_dump(exclude_none=True)
    res = stage_pipeline.update_statuses(db, el, changes, user_id=ident.user_id)

    out = {
        "advanced": res["advanced"],
        "stage_id": res["stage_id"],
        "completed_stage": res.get("completed_stage"),
        "activity": ActivityOut.model_validate(res["activity"]),
        "stock": PrecastStockOut.model_validate(res["stock"]) if res.get("stock") else None,
    }
    project_id = el.project_id
    db.commit()

    if out["advanced"]:
        where = f"stage {out['stage_id']}" if out["stage_id"] else "stockyard"
        out["warnings"] = projector.publish(ActivityEvent(
            event_context="Production",
            event_name="Advance",
            description=f"Element {element_id} completed stage {out['completed_stage']}, moved to {where}",
            identity=ident,
            project_id=project_id,
        ))
    else:
        out["warnings"] = []
    return out
