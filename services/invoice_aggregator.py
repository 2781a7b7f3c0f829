# services/invoice_aggregator.py
"""
Stage-wise breakdown of an invoice for the invoice screen and the PDF renderer.

    amount                       = unit_rate * volume * (1 + tax/100)
    amount_paid_by_payment_term  = stage total * payment_term[stage] / 100
"""
import json
import logging
from collections import OrderedDict
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session, aliased

from models import (
    Element,
    ElementInvoiceHistory,
    ElementType,
    Invoice,
    Precast,
    WorkOrder,
    WorkOrderMaterial,
)

logger = logging.getLogger(__name__)

STAGE_ORDER = ("casted", "dispatch", "erection", "handover")
_ALIASES = {"dispatched": "dispatch"}
CENT = Decimal("0.01")


def normalise_stage_key(key: str) -> str:
    k = (key or "").strip().lower()
    return _ALIASES.get(k, k)


def money(v: Decimal) -> Decimal:
    return Decimal(v).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_payment_term(raw: Any) -> Dict[str, Decimal]:
    """stage -> percent. Anything malformed yields {} instead of failing the read."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("malformed payment_term JSON: %r", raw)
            return {}
    if not isinstance(raw, dict):
        logger.warning("payment_term is not an object: %r", raw)
        return {}
    out: Dict[str, Decimal] = {}
    try:
        for k, v in raw.items():
            out[normalise_stage_key(str(k))] = Decimal(str(v))
    except (InvalidOperation, TypeError, ValueError):
        logger.warning("payment_term has non-numeric values: %r", raw)
        return {}
    return out


def _history_rows(db: Session, invoice: Invoice):
    Tower = aliased(Precast)
    return (
        db.query(
            ElementInvoiceHistory.stage,
            ElementInvoiceHistory.volume,
            ElementType.id.label("element_type_id"),
            ElementType.code.label("element_type"),
            ElementType.name.label("element_type_name"),
            Element.target_location,
            Precast.name.label("floor_name"),
            Precast.parent_id,
            Tower.name.label("tower_name"),
            WorkOrderMaterial.unit_rate,
            WorkOrderMaterial.tax,
        )
        .join(Element, Element.id == ElementInvoiceHistory.element_id)
        .join(ElementType, ElementType.id == Element.element_type_id)
        .join(
            WorkOrderMaterial,
            (WorkOrderMaterial.work_order_id == invoice.work_order_id)
            & (func.lower(WorkOrderMaterial.item_name) == func.lower(ElementType.code)),
        )
        .outerjoin(Precast, Precast.id == Element.target_location)
        .outerjoin(Tower, Tower.id == Precast.parent_id)
        .filter(ElementInvoiceHistory.invoice_id == invoice.id)
        .order_by(ElementInvoiceHistory.id)
        .all()
    )


def build_stage_summary(db: Session, invoice: Invoice) -> List[Dict[str, Any]]:
    wo = db.get(WorkOrder, invoice.work_order_id)
    terms = parse_payment_term(wo.payment_term if wo else None)

    stages: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for r in _history_rows(db, invoice):
        stage = normalise_stage_key(r.stage)
        volume = Decimal(r.volume or 0)
        rate = Decimal(r.unit_rate or 0)
        tax = Decimal(r.tax or 0)
        amount = rate * volume
        if tax > 0:
            amount = amount * (Decimal(1) + tax / Decimal(100))

        if r.parent_id:
            tower_id, tower_name, floor_id, floor_name = r.parent_id, r.tower_name, r.target_location, r.floor_name
        else:
            tower_id, tower_name, floor_id, floor_name = r.target_location, r.floor_name, None, "common"

        bucket = stages.setdefault(stage, {"total_amount": Decimal(0), "rows": OrderedDict()})
        bucket["total_amount"] += amount
        key = (r.element_type_id, tower_id, floor_id)
        row = bucket["rows"].setdefault(key, {
            "element_type_id": r.element_type_id,
            "element_type": r.element_type,
            "element_type_name": r.element_type_name,
            "tower_id": tower_id,
            "tower_name": tower_name,
            "floor_id": floor_id,
            "floor_name": floor_name,
            "unit_rate": rate,
            "tax": tax,
            "count": 0,
            "volume": Decimal(0),
            "amount": Decimal(0),
        })
        row["count"] += 1
        row["volume"] += volume
        row["amount"] += amount

    summary = []
    for stage in STAGE_ORDER:
        if stage not in stages:
            continue
        bucket = stages[stage]
        pct = terms.get(stage, Decimal(0))
        total = bucket["total_amount"]
        summary.append({
            "stage": stage,
            "payment_term_percent": pct,
            "total_amount": money(total),
            "amount_paid_by_payment_term": money(total * pct / Decimal(100)),
            "element_types": [
                {**row, "amount": money(row["amount"])} for row in bucket["rows"].values()
            ],
        })
    return summary

