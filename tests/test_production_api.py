"""Stage pipeline through the HTTP surface, plus element reads and QR labels."""
from datetime import timedelta

from models import CompleteProduction, Element, PrecastStock, utcnow

ALL_DONE = {
    "status": "completed",
    "qc_status": "completed",
    "mesh_mold_status": "completed",
    "reinforcement_status": "completed",
    "meshmold_qc_status": "completed",
    "reinforcement_qc_status": "completed",
}


def first_element_id(session_factory, type_id, hierarchy_id=10):
    with session_factory() as s:
        return (
            s.query(Element.id)
             .filter(Element.element_type_id == type_id, Element.target_location == hierarchy_id)
             .order_by(Element.id)
             .first()[0]
        )


def as_naive(dt):
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


class TestAdvanceOneElement:

    def test_start_puts_element_on_first_stage(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        resp = client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        assert resp.status_code == 201, resp.text
        act = resp.json()["activity"]
        assert act["stage_id"] == 76
        assert act["paper_id"] == 900
        assert act["assigned_to"] == 5
        assert act["status"] == "Inprogress"
        assert act["completed"] is False

    def test_all_completed_advances_to_next_stage(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)

        before = utcnow()
        resp = client.put(f"/api/v1/production/elements/{el_id}/status", json=ALL_DONE, headers=super_headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["advanced"] is True
        assert body["completed_stage"] == 76
        assert body["stage_id"] == 75
        assert body["activity"]["stage_id"] == 75
        assert all(body["activity"][f] == "Inprogress" for f in ALL_DONE)

        with session_factory() as s:
            rows = s.query(CompleteProduction).filter(CompleteProduction.element_id == el_id).all()
        assert len(rows) == 1
        assert rows[0].stage_id == 76
        assert rows[0].user_id == 1
        assert abs(as_naive(rows[0].started_at) - as_naive(before)) < timedelta(seconds=30)

    def test_partial_update_does_not_advance(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        resp = client.put(f"/api/v1/production/elements/{el_id}/status",
                          json={"status": "completed"}, headers=super_headers)
        body = resp.json()
        assert body["advanced"] is False
        assert body["stage_id"] == 76
        assert body["warnings"] == []

    def test_full_path_writes_one_row_per_stage_in_order(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        last = None
        for _ in range(5):
            last = client.put(f"/api/v1/production/elements/{el_id}/status", json=ALL_DONE, headers=super_headers)
            assert last.status_code == 200, last.text

        body = last.json()
        assert body["stage_id"] is None
        assert body["stock"]["stockyard"] is True
        assert body["activity"]["completed"] is True

        with session_factory() as s:
            stages = [r.stage_id for r in s.query(CompleteProduction)
                      .filter(CompleteProduction.element_id == el_id)
                      .order_by(CompleteProduction.started_at, CompleteProduction.id)]
            stock = s.query(PrecastStock).filter(PrecastStock.element_id == el_id).one()
        assert stages == [76, 75, 74, 73, 77]
        assert stock.production_date is not None

        again = client.put(f"/api/v1/production/elements/{el_id}/status", json=ALL_DONE, headers=super_headers)
        assert again.status_code == 400

    def test_invalid_status_value(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        resp = client.put(f"/api/v1/production/elements/{el_id}/status",
                          json={"status": "done"}, headers=super_headers)
        assert resp.status_code == 400

    def test_status_without_activity(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        resp = client.put(f"/api/v1/production/elements/{el_id}/status", json=ALL_DONE, headers=super_headers)
        assert resp.status_code == 404

    def test_start_twice(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        resp = client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        assert resp.status_code == 409


class TestElementReads:

    def test_list_elements_by_location(self, client, wall_type_id, super_headers):
        resp = client.get("/api/v1/elements", params={"element_type_id": wall_type_id, "hierarchy_id": 11},
                          headers=super_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"]["total_records"] == 2
        assert [e["element_code"] for e in body["data"]] == ["WALL/TA-F2/0004", "WALL/TA-F2/0005"]

    def test_element_detail_has_lifecycle(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        client.post(f"/api/v1/production/elements/{el_id}/start", headers=super_headers)
        client.put(f"/api/v1/production/elements/{el_id}/status", json=ALL_DONE, headers=super_headers)

        body = client.get(f"/api/v1/elements/{el_id}", headers=super_headers).json()
        assert body["location"]["tower_name"] == "Tower A"
        assert body["location"]["floor_name"] == "Floor 1"
        assert [c["stage_id"] for c in body["completed_stages"]] == [76]
        assert body["activity"]["stage_id"] == 75
        assert body["stock"] is None

    def test_unknown_element(self, client, seed, super_headers):
        assert client.get("/api/v1/elements/9999", headers=super_headers).status_code == 404


class TestQrLabel:

    def test_element_label_is_jpeg(self, client, wall_type_id, super_headers, session_factory):
        el_id = first_element_id(session_factory, wall_type_id)
        resp = client.get(f"/api/v1/qr/elements/{el_id}", headers=super_headers)
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/jpeg"
        assert resp.content[:2] == b"\xff\xd8"
        assert "WALL_TA-F1_0001.jpg" in resp.headers["content-disposition"]

    def test_payload(self):
        from utils.qr_label import qr_payload
        assert qr_payload(7, paper_id=900) == '{"id":7,"is_valid":true,"paper_id":900}'
        assert qr_payload(7, is_valid=False) == '{"id":7,"is_valid":false}'
