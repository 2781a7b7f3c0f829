from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from models import ElementTypeBom, InvBom
from schemas import BomLineOut, BomRevisionOut, ProductOut
from services import revision_store
from services.element_types import get_element_type
from utils.db_context import QueryTier, deadline

router = APIRouter(prefix="/bom", tags=["bom"])


@router.get("/products", response_model=List[ProductOut])
def list_products(
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    return db.query(InvBom).order_by(InvBom.product_name.asc()).all()


@router.get("/element-types/{type_id}", response_model=List[BomLineOut])
def current_lines(
    type_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    get_element_type(db, type_id)
    return (
        db.query(ElementTypeBom)
          .filter(ElementTypeBom.element_type_id == type_id)
          .order_by(ElementTypeBom.id)
          .all()
    )


@router.get("/element-types/{type_id}/revisions", response_model=List[BomRevisionOut])
def revisions(
    type_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    """Historical snapshots, oldest first. Readable after the type itself is gone."""
    return revision_store.list_bom_revisions(db, type_id)
