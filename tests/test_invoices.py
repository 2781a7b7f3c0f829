"""
Invoices: creation against work order volume, payments, stage history
and the stage-wise breakdown.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import FLOOR_1, wall_payload
from errors import BadInput
from models import (
    Element,
    ElementInvoiceHistory,
    Invoice,
    PrecastStock,
    WorkOrder,
    WorkOrderMaterial,
    utcnow,
)
from schemas import ElementTypeCreate, InvoiceCreate, InvoicePaymentIn
from services import element_types, invoices
from services.invoice_aggregator import build_stage_summary, parse_payment_term

TERMS = {"casted": 40, "dispatch": 20, "erection": 30, "handover": 10}


def make_work_order(db, project_id=1, payment_term=None, volume="50"):
    wo = WorkOrder(project_id=project_id, wo_number=f"WO-{project_id}-001", total_value=Decimal("10000"),
                   payment_term=TERMS if payment_term is None else payment_term)
    db.add(wo)
    db.flush()
    mat = WorkOrderMaterial(work_order_id=wo.id, item_name="wall", unit_rate=Decimal("100"),
                            tax=Decimal("18"), volume=Decimal(volume), volume_used=Decimal("0"))
    db.add(mat)
    db.flush()
    return wo, mat


def make_invoice(db, wo, items=()):
    return invoices.create_invoice(
        db,
        InvoiceCreate(work_order_id=wo.id, billing_address="1 Dock Rd", items=list(items)),
        actor="Tester",
    )


def wall_element(db):
    et = element_types.create_element_type(
        db,
        ElementTypeCreate(**wall_payload(hierarchy_quantity=[{"hierarchy_id": FLOOR_1, "quantity": 1}])),
        actor="Tester",
    )
    return db.query(Element).filter(Element.element_type_id == et.id).one()


class TestStageSummary:

    def test_two_stage_breakdown(self, db):
        wo, _ = make_work_order(db)
        inv = make_invoice(db, wo)
        el = wall_element(db)
        db.add_all([
            ElementInvoiceHistory(invoice_id=inv.id, work_order_id=wo.id, element_id=el.id,
                                  stage="casted", volume=Decimal("2")),
            ElementInvoiceHistory(invoice_id=inv.id, work_order_id=wo.id, element_id=el.id,
                                  stage="dispatch", volume=Decimal("2")),
        ])
        db.flush()

        summary = build_stage_summary(db, inv)

        assert [s["stage"] for s in summary] == ["casted", "dispatch"]
        casted, dispatch = summary
        assert casted["total_amount"] == Decimal("236.00")
        assert casted["amount_paid_by_payment_term"] == Decimal("94.40")
        assert dispatch["total_amount"] == Decimal("236.00")
        assert dispatch["amount_paid_by_payment_term"] == Decimal("47.20")

        row = casted["element_types"][0]
        assert row["element_type"] == "WALL"
        assert row["tower_name"] == "Tower A"
        assert row["floor_name"] == "Floor 1"
        assert row["count"] == 1

    def test_legacy_dispatched_rows_fold_into_dispatch(self, db):
        wo, _ = make_work_order(db, payment_term={"casted": 50, "dispatched": 50})
        inv = make_invoice(db, wo)
        el = wall_element(db)
        db.add(ElementInvoiceHistory(invoice_id=inv.id, work_order_id=wo.id, element_id=el.id,
                                     stage="dispatched", volume=Decimal("2")))
        db.flush()

        summary = build_stage_summary(db, inv)
        assert summary[0]["stage"] == "dispatch"
        assert summary[0]["amount_paid_by_payment_term"] == Decimal("118.00")

    def test_malformed_payment_term_yields_zero_percent(self, db):
        wo, _ = make_work_order(db, payment_term="{not json")
        inv = make_invoice(db, wo)
        el = wall_element(db)
        db.add(ElementInvoiceHistory(invoice_id=inv.id, work_order_id=wo.id, element_id=el.id,
                                     stage="casted", volume=Decimal("2")))
        db.flush()

        summary = build_stage_summary(db, inv)
        assert summary[0]["payment_term_percent"] == Decimal(0)
        assert summary[0]["amount_paid_by_payment_term"] == Decimal("0.00")
        assert summary[0]["total_amount"] == Decimal("236.00")

    @pytest.mark.parametrize("raw", [None, "", "[]", '{"casted": "abc"}', 42])
    def test_parse_payment_term_never_raises(self, raw):
        assert parse_payment_term(raw) == {}


class TestInvoiceCreation:

    def test_amount_includes_tax_and_consumes_volume(self, db):
        wo, mat = make_work_order(db)
        inv = make_invoice(db, wo, [{"work_order_material_id": mat.id, "volume": "4"}])
        assert inv.total_amount == Decimal("472.00")
        assert inv.name == "HR-HT-1"
        assert inv.payment_status == invoices.UNPAID
        assert mat.volume_used == Decimal("4")

    def test_revision_numbers_increase(self, db):
        wo, _ = make_work_order(db)
        make_invoice(db, wo)
        second = make_invoice(db, wo)
        assert second.revision_no == 2
        assert second.name == "HR-HT-2"

    def test_volume_over_remaining_is_rejected(self, db):
        wo, mat = make_work_order(db, volume="3")
        with pytest.raises(BadInput):
            make_invoice(db, wo, [{"work_order_material_id": mat.id, "volume": "4"}])


class TestPayments:

    def _invoice(self, db):
        wo, mat = make_work_order(db)
        return make_invoice(db, wo, [{"work_order_material_id": mat.id, "volume": "4"}])

    def test_status_follows_sum_of_payments(self, db):
        inv = self._invoice(db)

        res = invoices.record_payment(db, inv.id, InvoicePaymentIn(
            utr_number="UTR1", payment_status="partial_paid", amount_paid=Decimal("200")), actor="Tester")
        assert res["payment_status"] == invoices.PARTIAL_PAID
        assert res["balance"] == Decimal("272.00")

        res = invoices.record_payment(db, inv.id, InvoicePaymentIn(
            utr_number="UTR2", payment_status="fully_paid", amount_paid=Decimal("272")), actor="Tester")
        assert res["payment_status"] == invoices.FULLY_PAID
        assert res["balance"] == Decimal("0.00")
        assert res["total_paid"] == Decimal("472.00")

    def test_fully_paid_claim_must_settle(self, db):
        inv = self._invoice(db)
        with pytest.raises(BadInput):
            invoices.record_payment(db, inv.id, InvoicePaymentIn(
                utr_number="UTR1", payment_status="fully_paid", amount_paid=Decimal("100")), actor="Tester")

    def test_status_rule(self):
        total = Decimal("100")
        assert invoices.payment_status_for(Decimal("0"), total) == invoices.UNPAID
        assert invoices.payment_status_for(Decimal("0.01"), total) == invoices.PARTIAL_PAID
        assert invoices.payment_status_for(Decimal("100"), total) == invoices.FULLY_PAID
        assert invoices.payment_status_for(Decimal("150"), total) == invoices.FULLY_PAID


class TestPaymentTerm:

    def test_valid_term(self, db):
        wo, _ = make_work_order(db, payment_term={})
        invoices.set_payment_term(db, wo.id, {"casted": 40, "Dispatched": 20, "erection": 30, "handover": 10})
        assert wo.payment_term == {"casted": 40.0, "dispatch": 20.0, "erection": 30.0, "handover": 10.0}

    @pytest.mark.parametrize("term", [
        {"casted": 60, "dispatch": 20},
        {"casted": 120, "dispatch": -20},
        {"painting": 100},
    ])
    def test_invalid_term(self, db, term):
        wo, _ = make_work_order(db, payment_term={})
        with pytest.raises(BadInput):
            invoices.set_payment_term(db, wo.id, term)


class TestStageHistory:

    def test_period_picks_reached_stages_once(self, db):
        wo, _ = make_work_order(db)
        inv = make_invoice(db, wo)
        el = wall_element(db)
        now = utcnow()
        db.add(PrecastStock(element_id=el.id, element_type_id=el.element_type_id, project_id=1,
                            stockyard=True, order_by_erection=True, dispatch_status=True,
                            production_date=now, dispatch_start=now, dispatch_end=now))
        db.flush()

        start, end = now - timedelta(hours=1), now + timedelta(hours=1)
        added = invoices.record_stage_history(db, inv.id, start, end)
        assert added == {"casted": 1, "dispatch": 1, "erection": 0, "handover": 0}

        again = invoices.record_stage_history(db, inv.id, start, end)
        assert again == {"casted": 0, "dispatch": 0, "erection": 0, "handover": 0}

    def test_non_billable_elements_are_skipped(self, db):
        wo, _ = make_work_order(db)
        inv = make_invoice(db, wo)
        el = wall_element(db)
        el.billable = False
        now = utcnow()
        db.add(PrecastStock(element_id=el.id, element_type_id=el.element_type_id, project_id=1,
                            stockyard=True, production_date=now))
        db.flush()
        added = invoices.record_stage_history(db, inv.id, now - timedelta(hours=1), now + timedelta(hours=1))
        assert added["casted"] == 0

    def test_reversed_period(self, db):
        wo, _ = make_work_order(db)
        inv = make_invoice(db, wo)
        now = utcnow()
        with pytest.raises(BadInput):
            invoices.record_stage_history(db, inv.id, now, now - timedelta(days=1))


class TestInvoiceApi:

    def _work_orders(self, session_factory):
        with session_factory() as s:
            wo1, mat1 = make_work_order(s, project_id=1)
            wo2, _ = make_work_order(s, project_id=2)
            s.commit()
            return wo1.id, mat1.id, wo2.id

    def test_create_pay_and_read(self, client, super_headers, session_factory):
        wo1, mat1, _ = self._work_orders(session_factory)
        resp = client.post("/api/v1/invoices", json={
            "work_order_id": wo1,
            "billing_address": "1 Dock Rd",
            "items": [{"work_order_material_id": mat1, "volume": 4}],
        }, headers=super_headers)
        assert resp.status_code == 201, resp.text
        inv = resp.json()
        assert inv["total_amount"] == 472
        assert inv["payment_status"] == "unpaid"

        pay = client.post(f"/api/v1/invoices/{inv['id']}/payments", json={
            "utr_number": "UTR-77", "payment_status": "partial_paid", "amount_paid": 100,
        }, headers=super_headers)
        assert pay.status_code == 201, pay.text
        assert pay.json()["payment_status"] == "partial_paid"

        doc = client.get(f"/api/v1/invoices/{inv['id']}", headers=super_headers).json()
        assert doc["invoice"]["total_paid"] == 100
        assert doc["items"][0]["item_name"] == "wall"
        assert doc["payments"][0]["utr_number"] == "UTR-77"
        assert doc["stage_summary"] == []

    def test_payment_term_endpoint(self, client, super_headers, session_factory):
        wo1, _, _ = self._work_orders(session_factory)
        ok = client.put(f"/api/v1/work-orders/{wo1}/payment-term",
                        json={"payment_term": TERMS}, headers=super_headers)
        assert ok.status_code == 200
        bad = client.put(f"/api/v1/work-orders/{wo1}/payment-term",
                         json={"payment_term": {"casted": 10}}, headers=super_headers)
        assert bad.status_code == 400

    def test_list_is_role_scoped(self, client, super_headers, admin_headers, viewer_headers, seed, session_factory):
        wo1, _, wo2 = self._work_orders(session_factory)
        for wo in (wo1, wo2):
            assert client.post("/api/v1/invoices", json={"work_order_id": wo},
                               headers=super_headers).status_code == 201

        everything = client.get("/api/v1/invoices", headers=super_headers).json()
        assert everything["pagination"]["total_records"] == 2

        own = client.get("/api/v1/invoices", headers=admin_headers).json()
        assert [i["project_id"] for i in own["data"]] == [1]

        other = client.get("/api/v1/invoices", headers={"Authorization": f"Bearer {seed.tokens['other_admin']}"}).json()
        assert [i["project_id"] for i in other["data"]] == [2]

        assert client.get("/api/v1/invoices", headers=viewer_headers).status_code == 403

    def test_admin_cannot_read_foreign_invoice(self, client, super_headers, admin_headers, session_factory):
        _, _, wo2 = self._work_orders(session_factory)
        inv = client.post("/api/v1/invoices", json={"work_order_id": wo2}, headers=super_headers).json()
        assert client.get(f"/api/v1/invoices/{inv['id']}", headers=admin_headers).status_code == 404

    def test_admin_cannot_invoice_foreign_work_order(self, client, admin_headers, session_factory):
        _, _, wo2 = self._work_orders(session_factory)
        resp = client.post("/api/v1/invoices", json={"work_order_id": wo2}, headers=admin_headers)
        assert resp.status_code == 404
        with session_factory() as s:
            assert s.query(Invoice).count() == 0

    def test_admin_cannot_set_foreign_payment_term(self, client, admin_headers, session_factory):
        wo1, _, wo2 = self._work_orders(session_factory)
        foreign = client.put(f"/api/v1/work-orders/{wo2}/payment-term",
                             json={"payment_term": {"casted": 100}}, headers=admin_headers)
        assert foreign.status_code == 404
        with session_factory() as s:
            assert s.get(WorkOrder, wo2).payment_term == TERMS

        own = client.put(f"/api/v1/work-orders/{wo1}/payment-term",
                         json={"payment_term": {"casted": 100}}, headers=admin_headers)
        assert own.status_code == 200

    def test_viewer_cannot_create(self, client, viewer_headers, session_factory):
        wo1, _, _ = self._work_orders(session_factory)
        resp = client.post("/api/v1/invoices", json={"work_order_id": wo1}, headers=viewer_headers)
        assert resp.status_code == 403
        with session_factory() as s:
            assert s.query(Invoice).count() == 0
