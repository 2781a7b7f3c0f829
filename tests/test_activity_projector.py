"""Post-commit audit rows and notification fan-out."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from deps.auth import Identity
from models import ActivityLog, Notification
from services.activity_projector import ActivityEvent, ActivityProjector


def _event(**overrides):
    body = dict(
        event_context="Element Type",
        event_name="Create",
        description="Created element type 123456789 (WALL)",
        identity=Identity(user_id=1, role_name="superadmin", host_name="ws-01",
                          ip_address="10.0.0.1", display_name="Super Admin", session_id="sid-super"),
        project_id=1,
        notify_message="New element type created: Wall panel",
        action_path="/project/1/element",
    )
    body.update(overrides)
    return ActivityEvent(**body)


class TestPublishInline:

    def test_audit_row(self, projector, seed, session_factory):
        assert projector.publish(_event()) == []
        with session_factory() as s:
            log = s.query(ActivityLog).one()
        assert log.user_name == "Super Admin"
        assert log.host_name == "ws-01"
        assert log.ip_address == "10.0.0.1"
        assert log.event_context == "Element Type"
        assert log.project_id == 1

    def test_recipients(self, projector, seed, session_factory):
        with session_factory() as s:
            # actor, project member, end-client user, client user
            assert projector.recipients(s, 1, 1) == {1, 2, 4, 5}
            assert projector.recipients(s, None, 3) == {3}

    def test_notifications_rows(self, projector, seed, session_factory):
        projector.publish(_event())
        with session_factory() as s:
            notes = s.query(Notification).order_by(Notification.user_id).all()
        assert [n.user_id for n in notes] == [1, 2, 4, 5]
        assert {n.status for n in notes} == {"unread"}
        assert notes[0].action == "http://precast.test/project/1/element"

    def test_no_message_no_notifications(self, projector, seed, session_factory):
        projector.publish(_event(notify_message=None))
        with session_factory() as s:
            assert s.query(Notification).count() == 0
            assert s.query(ActivityLog).count() == 1

    def test_failures_become_warnings(self, seed):
        # a database without tables: both inserts fail
        bare = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        broken = ActivityProjector(sessionmaker(bind=bare), "")
        warnings = broken.publish(_event())
        assert warnings == ["Activity log was not recorded", "Notifications were not sent"]
        bare.dispose()


class TestWorker:

    def test_queue_consumer_delivers(self, projector, seed, session_factory):
        projector.start()
        try:
            assert projector.running
            assert projector.publish(_event()) == []
            projector.drain()
        finally:
            projector.stop()
        assert not projector.running
        with session_factory() as s:
            assert s.query(Notification).count() == 4

    def test_consumer_survives_bad_intent(self, seed, session_factory):
        calls = []

        class Flaky(ActivityProjector):
            def _deliver(self, intent):
                calls.append(intent.message)
                if intent.message == "boom":
                    raise RuntimeError("boom")
                return super()._deliver(intent)

        p = Flaky(session_factory, "")
        p.start()
        try:
            p.publish(_event(notify_message="boom"))
            p.publish(_event(notify_message="fine"))
            p.drain()
            assert p.running
        finally:
            p.stop()
        assert calls == ["boom", "fine"]
        with session_factory() as s:
            assert {n.message for n in s.query(Notification)} == {"fine"}


class TestThroughHttp:

    def test_mutation_response_carries_warnings_key(self, client, super_headers, session_factory):
        from conftest import wall_payload
        resp = client.post("/api/v1/element-types", json=wall_payload(), headers=super_headers)
        assert resp.json()["warnings"] == []
        with session_factory() as s:
            assert s.query(Notification).filter(Notification.message.like("New element type%")).count() == 4
