from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from schemas import DispatchIn, ElementIdsIn, PrecastStockOut, StockFlagsUpdate
from services import precast_stock as svc
from services.activity_projector import ActivityEvent, ActivityProjector, get_projector
from utils.db_context import QueryTier, deadline

router = APIRouter(prefix="/precast-stock", tags=["precast-stock"])


def _rows_out(rows):
    return [
        {**PrecastStockOut.model_validate(r).model_dump(), "stock_status": svc.stock_status(r)}
        for r in rows
    ]


def _moved(db, rows, ident, projector, event_name, description):
    out = {"elements": _rows_out(rows)}
    project_id = rows[0].project_id if rows else None
    db.commit()
    out["warnings"] = projector.publish(ActivityEvent(
        event_context="Precast Stock",
        event_name=event_name,
        description=description,
        identity=ident,
        project_id=project_id,
    ))
    return out


@router.get("/elements/{element_id}")
def get_stock(
    element_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    return _rows_out([svc.get_stock(db, element_id)])[0]


@router.get("/projects/{project_id}/counts")
def status_counts(
    project_id: int,
    element_type_id: Optional[int] = Query(None),
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    return svc.status_counts(db, project_id, element_type_id)


@router.post("/request-erection")
def request_erection(
    payload: ElementIdsIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    rows = svc.request_erection(db, payload.element_ids)
    return _moved(db, rows, ident, projector, "Request",
                  f"Erection requested for {len(rows)} element(s)")


@router.post("/dispatch")
def dispatch(
    payload: DispatchIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    rows = svc.dispatch(db, payload.element_ids,
                        dispatch_start=payload.dispatch_start, dispatch_end=payload.dispatch_end)
    return _moved(db, rows, ident, projector, "Dispatch",
                  f"Dispatched {len(rows)} element(s)")


@router.post("/receive")
def receive_at_site(
    payload: ElementIdsIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    rows = svc.receive_at_site(db, payload.element_ids)
    return _moved(db, rows, ident, projector, "Receive",
                  f"Received {len(rows)} element(s) at site")


@router.post("/erect")
def erect(
    payload: ElementIdsIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    rows = svc.erect(db, payload.element_ids)
    return _moved(db, rows, ident, projector, "Erect",
                  f"Erected {len(rows)} element(s)")


@router.patch("/elements/{element_id}")
def set_flags(
    element_id: int,
    payload: StockFlagsUpdate,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    s = svc.set_flags(db, element_id, payload.model_dump(exclude_none=True))
    return _moved(db, [s], ident, projector, "PATCH",
                  f"Stock flags of element {element_id} corrected")
