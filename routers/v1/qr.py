from io import BytesIO

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from models import Activity
from services import element_ledger
from utils.db_context import QueryTier, deadline
from utils.qr_label import render_qr_label

router = APIRouter(prefix="/qr", tags=["qr"])


@router.get("/elements/{element_id}")
def element_qr(
    element_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    el = element_ledger.get_element(db, element_id)
    act = db.query(Activity).filter(Activity.element_id == el.id).first()

    img = render_qr_label(
        el.id,
        el.element_code,
        paper_id=act.paper_id if act else None,
        is_valid=not el.disable,
    )
    filename = el.element_code.replace("/", "_")
    return StreamingResponse(
        BytesIO(img),
        media_type="image/jpeg",
        headers={"Content-Disposition": f'inline; filename="{filename}.jpg"'},
    )
