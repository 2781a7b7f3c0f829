"""Session resolution and role scope."""
import pytest
from sqlalchemy import select

from deps.auth import Identity, issue_session_token, resolve
from deps.authz import role_scope, visible_project_ids
from errors import Forbidden, Unauthorized
from models import Invoice, Project, User, UserSession

PROTECTED = "/api/v1/element-types?project_id=1"


class TestResolve:

    def test_bearer_token(self, db, seed):
        ident = resolve(db, f"Bearer {seed.tokens['admin']}", "127.0.0.1")
        assert ident.user_id == 2
        assert ident.role_name == "admin"
        assert ident.display_name == "Alice Admin"
        assert ident.host_name == "ws-02"
        assert ident.ip_address == "10.0.0.2"
        assert ident.session_id == "sid-admin"

    def test_raw_token_without_prefix(self, db, seed):
        assert resolve(db, seed.tokens["superadmin"]).is_superadmin

    def test_request_ip_fills_missing_session_ip(self, db, seed):
        ident = resolve(db, seed.tokens["other_admin"], "192.168.1.9")
        assert ident.ip_address == "192.168.1.9"

    @pytest.mark.parametrize("raw", [None, "", "Bearer ", "Bearer not-a-jwt"])
    def test_missing_or_garbage(self, db, raw):
        with pytest.raises(Unauthorized):
            resolve(db, raw)

    def test_expired_session(self, db, seed):
        token = issue_session_token(db, user_id=3, session_id="sid-old", minutes=-5)
        with pytest.raises(Unauthorized):
            resolve(db, token)

    def test_revoked_session(self, db, seed):
        db.query(UserSession).filter(UserSession.session_id == "sid-viewer").delete()
        db.flush()
        with pytest.raises(Unauthorized):
            resolve(db, seed.tokens["viewer"])

    def test_inactive_user(self, db, seed):
        db.get(User, 3).is_active = False
        db.flush()
        with pytest.raises(Unauthorized):
            resolve(db, seed.tokens["viewer"])


class TestHttpGate:

    def test_no_header_is_401(self, client, seed):
        resp = client.get(PROTECTED)
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    def test_bad_token_is_401(self, client, seed):
        assert client.get(PROTECTED, headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_valid_token(self, client, super_headers):
        assert client.get(PROTECTED, headers=super_headers).status_code == 200


class TestRoleScope:

    def _ident(self, user_id, role):
        return Identity(user_id=user_id, role_name=role, host_name="", ip_address="",
                        display_name="", session_id="x")

    def test_superadmin_sees_everything(self, db):
        ids = db.execute(select(Project.id).where(role_scope(self._ident(1, "superadmin"), Project.id))).scalars()
        assert sorted(ids) == [1, 2]

    def test_admin_sees_own_client_chain(self, db):
        ids = db.execute(visible_project_ids(self._ident(2, "admin"))).scalars().all()
        assert ids == [1]
        ids = db.execute(select(Project.id).where(role_scope(self._ident(6, "admin"), Project.id))).scalars().all()
        assert ids == [2]

    def test_other_roles_are_forbidden(self):
        with pytest.raises(Forbidden):
            role_scope(self._ident(3, "viewer"), Invoice.project_id)
