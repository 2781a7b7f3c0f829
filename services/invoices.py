# services/invoices.py
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import and_, exists, func
from sqlalchemy.orm import Session

from errors import BadInput, NotFound
from models import (
    Element,
    ElementInvoiceHistory,
    ElementType,
    EndClient,
    Invoice,
    InvoiceItem,
    InvoicePayment,
    PrecastStock,
    Project,
    WorkOrder,
    WorkOrderMaterial,
    utcnow,
)
from services.invoice_aggregator import STAGE_ORDER, build_stage_summary, money, normalise_stage_key

logger = logging.getLogger(__name__)

UNPAID = "unpaid"
PARTIAL_PAID = "partial_paid"
FULLY_PAID = "fully_paid"


def validate_payment_term(mapping: Dict[str, Any]) -> Dict[str, Decimal]:
    """Keys from the canonical stage set (legacy 'dispatched' folded), 0..100 each, summing to 100."""
    out: Dict[str, Decimal] = {}
    for k, v in (mapping or {}).items():
        key = normalise_stage_key(k)
        if key not in STAGE_ORDER:
            raise BadInput(f"Unknown payment term stage: {k}")
        if key in out:
            raise BadInput(f"Payment term stage given twice: {key}")
        pct = Decimal(str(v))
        if pct < 0 or pct > 100:
            raise BadInput(f"Payment term for {key} must be between 0 and 100")
        out[key] = pct
    if out and sum(out.values()) != Decimal(100):
        raise BadInput("Payment term percentages must sum to 100", total=str(sum(out.values())))
    return out


def set_payment_term(db: Session, work_order_id: int, mapping: Dict[str, Any]) -> WorkOrder:
    wo = get_work_order(db, work_order_id)
    terms = validate_payment_term(mapping)
    wo.payment_term = {k: float(v) for k, v in terms.items()}
    db.flush()
    return wo


def get_work_order(db: Session, work_order_id: int) -> WorkOrder:
    wo = db.get(WorkOrder, work_order_id)
    if wo is None:
        raise NotFound("Work order not found", work_order_id=work_order_id)
    return wo


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    inv = db.get(Invoice, invoice_id)
    if inv is None:
        raise NotFound("Invoice not found", invoice_id=invoice_id)
    return inv


def next_revision_no(db: Session, work_order_id: int) -> int:
    current = db.query(func.coalesce(func.max(Invoice.revision_no), 0)).filter(
        Invoice.work_order_id == work_order_id
    ).scalar()
    return int(current or 0) + 1


def create_invoice(db: Session, payload, *, actor: str) -> Invoice:
    wo = get_work_order(db, payload.work_order_id)
    project = db.get(Project, wo.project_id)
    end_client = db.get(EndClient, project.end_client_id) if project else None

    revision_no = next_revision_no(db, wo.id)
    name = f"{end_client.abbreviation if end_client else ''}-{project.abbreviation if project else ''}-{revision_no}"

    inv = Invoice(
        work_order_id=wo.id,
        project_id=wo.project_id,
        revision_no=revision_no,
        name=name,
        billing_address=payload.billing_address,
        shipping_address=payload.shipping_address,
        total_amount=Decimal(0),
        total_paid=Decimal(0),
        payment_status=UNPAID,
        in_draft=True,
        created_by=actor,
    )
    db.add(inv)
    db.flush()

    total = Decimal(0)
    for item in payload.items:
        mat = db.get(WorkOrderMaterial, item.work_order_material_id)
        if mat is None or mat.work_order_id != wo.id:
            raise BadInput("Work order material not found on this work order",
                           work_order_material_id=item.work_order_material_id)
        remaining = Decimal(mat.volume or 0) - Decimal(mat.volume_used or 0)
        if item.volume > remaining:
            raise BadInput("Invoiced volume exceeds remaining work order volume",
                           work_order_material_id=mat.id, remaining=str(remaining))
        amount = Decimal(mat.unit_rate or 0) * item.volume
        if mat.tax and mat.tax > 0:
            amount = amount * (Decimal(1) + Decimal(mat.tax) / Decimal(100))
        amount = money(amount)
        db.add(InvoiceItem(invoice_id=inv.id, work_order_material_id=mat.id, volume=item.volume, amount=amount))
        mat.volume_used = Decimal(mat.volume_used or 0) + item.volume
        total += amount

    inv.total_amount = money(total)
    inv.payment_status = payment_status_for(Decimal(0), inv.total_amount)
    db.flush()
    logger.info("invoice %s (%s) created for work order %s, total=%s", inv.id, inv.name, wo.id, inv.total_amount)
    return inv


def payment_status_for(total_paid: Decimal, total_amount: Decimal) -> str:
    if total_paid >= total_amount:
        return FULLY_PAID
    if total_paid > 0:
        return PARTIAL_PAID
    return UNPAID


def record_payment(db: Session, invoice_id: int, payload, *, actor: str) -> Dict[str, Any]:
    inv = db.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().first()
    if inv is None:
        raise NotFound("Invoice not found", invoice_id=invoice_id)

    already = Decimal(db.query(func.coalesce(func.sum(InvoicePayment.amount_paid), 0))
                      .filter(InvoicePayment.invoice_id == inv.id).scalar() or 0)
    total_amount = Decimal(inv.total_amount or 0)
    if payload.payment_status == FULLY_PAID and already + payload.amount_paid < total_amount:
        raise BadInput(
            "amount_paid does not settle the invoice",
            balance=str(money(total_amount - already)),
        )

    db.add(InvoicePayment(
        invoice_id=inv.id,
        amount_paid=payload.amount_paid,
        utr_number=payload.utr_number.strip(),
        payment_date=payload.payment_date or utcnow(),
        created_by=actor,
    ))
    db.flush()

    paid = Decimal(db.query(func.coalesce(func.sum(InvoicePayment.amount_paid), 0))
                   .filter(InvoicePayment.invoice_id == inv.id).scalar() or 0)
    inv.total_paid = money(paid)
    inv.payment_status = payment_status_for(paid, total_amount)
    db.flush()
    return {
        "invoice_id": inv.id,
        "total_amount": money(total_amount),
        "total_paid": inv.total_paid,
        "balance": money(max(total_amount - paid, Decimal(0))),
        "payment_status": inv.payment_status,
    }


def _stored_keys(stage: str):
    """History rows written before the rename carry "dispatched"."""
    return [stage, "dispatched"] if stage == "dispatch" else [stage]


def _not_billed(invoice: Invoice, stage: str):
    return ~exists().where(
        and_(
            ElementInvoiceHistory.element_id == PrecastStock.element_id,
            ElementInvoiceHistory.stage.in_(_stored_keys(stage)),
            ElementInvoiceHistory.work_order_id == invoice.work_order_id,
        )
    )


def record_stage_history(db: Session, invoice_id: int, period_start: datetime, period_end: datetime) -> Dict[str, int]:
    """
    Attach billable elements that reached a billing stage inside the period
    and were not yet billed for that stage on the same work order.
    """
    if period_end < period_start:
        raise BadInput("period_end is before period_start")
    inv = get_invoice(db, invoice_id)

    base = (
        db.query(PrecastStock.element_id, ElementType.volume)
          .join(Element, Element.id == PrecastStock.element_id)
          .join(ElementType, ElementType.id == Element.element_type_id)
          .filter(PrecastStock.project_id == inv.project_id, Element.billable.is_(True))
    )
    criteria = {
        "casted": [PrecastStock.production_date.between(period_start, period_end)],
        "dispatch": [
            PrecastStock.dispatch_status.is_(True),
            PrecastStock.dispatch_end.between(period_start, period_end),
        ],
        "erection": [
            PrecastStock.erected.is_(True),
            PrecastStock.updated_at.between(period_start, period_end),
        ],
        "handover": [
            PrecastStock.erected.is_(True),
            PrecastStock.receive_in_erection.is_(True),
            PrecastStock.updated_at.between(period_start, period_end),
        ],
    }

    added: Dict[str, int] = {}
    for stage in STAGE_ORDER:
        rows = base.filter(*criteria[stage]).filter(_not_billed(inv, stage)).all()
        for element_id, volume in rows:
            db.add(ElementInvoiceHistory(
                invoice_id=inv.id,
                work_order_id=inv.work_order_id,
                element_id=element_id,
                stage=stage,
                volume=volume or 0,
            ))
        added[stage] = len(rows)
    db.flush()
    logger.info("invoice %s: stage history %s", inv.id, added)
    return added


def invoice_document(db: Session, invoice_id: int) -> Dict[str, Any]:
    """Everything the PDF renderer needs."""
    inv = get_invoice(db, invoice_id)
    items = (
        db.query(InvoiceItem, WorkOrderMaterial)
          .join(WorkOrderMaterial, WorkOrderMaterial.id == InvoiceItem.work_order_material_id)
          .filter(InvoiceItem.invoice_id == inv.id)
          .order_by(InvoiceItem.id)
          .all()
    )
    payments = (
        db.query(InvoicePayment)
          .filter(InvoicePayment.invoice_id == inv.id)
          .order_by(InvoicePayment.id)
          .all()
    )
    return {
        "invoice": inv,
        "items": [
            {
                "id": it.id,
                "work_order_material_id": mat.id,
                "item_name": mat.item_name,
                "unit_rate": mat.unit_rate,
                "tax": mat.tax,
                "volume": it.volume,
                "amount": it.amount,
            }
            for it, mat in items
        ],
        "payments": [
            {
                "id": p.id,
                "amount_paid": p.amount_paid,
                "utr_number": p.utr_number,
                "payment_date": p.payment_date,
            }
            for p in payments
        ],
        "stage_summary": build_stage_summary(db, inv),
    }


def list_query(db: Session, *, scope, project_id: Optional[int] = None):
    q = db.query(Invoice).filter(scope)
    if project_id is not None:
        q = q.filter(Invoice.project_id == project_id)
    return q.order_by(Invoice.id.desc())
