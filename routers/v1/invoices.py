from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from deps.authz import ADMIN, SUPERADMIN, require_roles, role_scope
from errors import NotFound
from models import Invoice, WorkOrder
from schemas import InvoiceCreate, InvoiceOut, InvoicePaymentIn, PaymentTermIn, StageHistoryIn
from services import invoices as svc
from services.activity_projector import ActivityEvent, ActivityProjector, get_projector
from utils.db_context import QueryTier, deadline
from utils.pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/invoices", tags=["invoices"])
work_orders_router = APIRouter(prefix="/work-orders", tags=["work-orders"])

billing_roles = require_roles(SUPERADMIN, ADMIN)


def _scoped_invoice(db: Session, ident: Identity, invoice_id: int) -> Invoice:
    inv = (
        db.query(Invoice)
          .filter(Invoice.id == invoice_id, role_scope(ident, Invoice.project_id))
          .first()
    )
    if inv is None:
        raise NotFound("Invoice not found", invoice_id=invoice_id)
    return inv


def _scoped_work_order(db: Session, ident: Identity, work_order_id: int) -> WorkOrder:
    wo = (
        db.query(WorkOrder)
          .filter(WorkOrder.id == work_order_id, role_scope(ident, WorkOrder.project_id))
          .first()
    )
    if wo is None:
        raise NotFound("Work order not found", work_order_id=work_order_id)
    return wo


@router.get("")
def list_invoices(
    project_id: Optional[int] = Query(None),
    params: PageParams = Depends(page_params),
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    q = svc.list_query(db, scope=role_scope(ident, Invoice.project_id), project_id=project_id)
    return paginate(q, params, lambda inv: InvoiceOut.model_validate(inv).model_dump())


@router.get("/{invoice_id}")
def get_invoice(
    invoice_id: int,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
):
    _scoped_invoice(db, ident, invoice_id)
    doc = svc.invoice_document(db, invoice_id)
    return {**doc, "invoice": InvoiceOut.model_validate(doc["invoice"])}


@router.post("", status_code=201)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(billing_roles),
    projector: ActivityProjector = Depends(get_projector),
):
    _scoped_work_order(db, ident, payload.work_order_id)
    inv = svc.create_invoice(db, payload, actor=ident.display_name)
    out = InvoiceOut.model_validate(inv).model_dump()
    db.commit()

    out["warnings"] = projector.publish(ActivityEvent(
        event_context="Invoice",
        event_name="Create",
        description=f"Created invoice {out['name']} for work order {out['work_order_id']}",
        identity=ident,
        project_id=out["project_id"],
        notify_message=f"New invoice created: {out['name']}",
        action_path=f"/project/{out['project_id']}/invoice/{out['id']}",
    ))
    return out


@router.post("/{invoice_id}/payments", status_code=201)
def record_payment(
    invoice_id: int,
    payload: InvoicePaymentIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(billing_roles),
    projector: ActivityProjector = Depends(get_projector),
):
    inv = _scoped_invoice(db, ident, invoice_id)
    project_id = inv.project_id
    out = svc.record_payment(db, invoice_id, payload, actor=ident.display_name)
    db.commit()

    out["warnings"] = projector.publish(ActivityEvent(
        event_context="Invoice",
        event_name="Payment",
        description=f"Payment {payload.amount_paid} recorded on invoice {invoice_id} (UTR {payload.utr_number})",
        identity=ident,
        project_id=project_id,
        notify_message=f"Payment received on invoice {invoice_id}",
        action_path=f"/project/{project_id}/invoice/{invoice_id}",
    ))
    return out


@router.post("/{invoice_id}/stage-history")
def record_stage_history(
    invoice_id: int,
    payload: StageHistoryIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(billing_roles),
    projector: ActivityProjector = Depends(get_projector),
):
    inv = _scoped_invoice(db, ident, invoice_id)
    project_id = inv.project_id
    added = svc.record_stage_history(db, invoice_id, payload.period_start, payload.period_end)
    db.commit()

    warnings = projector.publish(ActivityEvent(
        event_context="Invoice",
        event_name="Stage History",
        description=f"Invoice {invoice_id}: billed elements per stage {added}",
        identity=ident,
        project_id=project_id,
    ))
    return {"invoice_id": invoice_id, "added": added, "warnings": warnings}


@work_orders_router.put("/{work_order_id}/payment-term")
def set_payment_term(
    work_order_id: int,
    payload: PaymentTermIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(billing_roles),
    projector: ActivityProjector = Depends(get_projector),
):
    _scoped_work_order(db, ident, work_order_id)
    wo = svc.set_payment_term(db, work_order_id, payload.payment_term)
    out = {"work_order_id": wo.id, "payment_term": dict(wo.payment_term)}
    project_id = wo.project_id
    db.commit()

    out["warnings"] = projector.publish(ActivityEvent(
        event_context="Work Order",
        event_name="PUT",
        description=f"Payment term of work order {work_order_id} set to {out['payment_term']}",
        identity=ident,
        project_id=project_id,
    ))
    return out
