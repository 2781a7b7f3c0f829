from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from models import Element, PrecastStock
from schemas import ActivityOut, CompleteProductionOut, ElementOut, PrecastStockOut
from services import element_ledger, stage_pipeline
from services.precast_stock import stock_status
from utils.db_context import QueryTier, deadline
from utils.pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/elements", tags=["elements"])


@router.get("")
def list_elements(
    element_type_id: int = Query(...),
    hierarchy_id: Optional[int] = Query(None),
    include_disabled: bool = Query(False),
    params: PageParams = Depends(page_params),
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    q = db.query(Element).filter(Element.element_type_id == element_type_id)
    if hierarchy_id is not None:
        q = q.filter(Element.target_location == hierarchy_id)
    if not include_disabled:
        q = q.filter(Element.disable.is_(False))
    q = q.order_by(Element.id.asc())
    return paginate(q, params, lambda el: ElementOut.model_validate(el).model_dump())


@router.get("/{element_id}")
def get_element(
    element_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    el = element_ledger.get_element(db, element_id)
    life = stage_pipeline.lifecycle(db, el)
    stock = db.query(PrecastStock).filter(PrecastStock.element_id == el.id).first()
    return {
        **ElementOut.model_validate(el).model_dump(),
        "location": element_ledger.tower_and_floor(db, el.target_location),
        "activity": ActivityOut.model_validate(life["activity"]) if life["activity"] else None,
        "completed_stages": [CompleteProductionOut.model_validate(c) for c in life["completed_stages"]],
        "stock": PrecastStockOut.model_validate(stock) if stock else None,
        "stock_status": stock_status(stock) if stock else None,
    }
