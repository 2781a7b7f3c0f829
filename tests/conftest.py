"""
Pytest fixtures for the precast API test suite.

Provides:
- an in-memory SQLite database shared through a StaticPool
- a seeded project (client -> end client -> project, tower/floors, stages,
  drawing types, inventory products) with session tokens per role
- a TestClient whose get_db / get_projector dependencies point at that database

The lifespan is not entered, so the projector runs inline (no worker thread).
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SESSION_SECRET", "test-secret")

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from deps.auth import issue_session_token
from main import app
from models import (
    Client,
    DrawingType,
    EndClient,
    InvBom,
    Precast,
    Project,
    ProjectMember,
    ProjectStage,
    Role,
    User,
)
from services.activity_projector import ActivityProjector, get_projector

STAGE_PATH = [76, 75, 74, 73, 77]
TOWER_ID = 1
FLOOR_1 = 10
FLOOR_2 = 11


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def seed(session_factory):
    """Reference data every test starts from. Returns ids and session tokens."""
    with session_factory() as s:
        s.add_all([
            Role(id=1, name="superadmin"),
            Role(id=2, name="admin"),
            Role(id=3, name="viewer"),
        ])
        s.add_all([
            User(id=1, email="root@precast.test", first_name="Super", last_name="Admin", role_id=1),
            User(id=2, email="alice@precast.test", first_name="Alice", last_name="Admin", role_id=2),
            User(id=3, email="victor@precast.test", first_name="Victor", last_name="Viewer", role_id=3),
            User(id=4, email="erin@precast.test", first_name="Erin", last_name="Endclient", role_id=3),
            User(id=5, email="max@precast.test", first_name="Max", last_name="Member", role_id=3),
            User(id=6, email="olga@precast.test", first_name="Olga", last_name="Other", role_id=2),
        ])
        s.flush()

        s.add_all([
            Client(id=1, name="Acme Builders", user_id=2),
            Client(id=2, name="Other Corp", user_id=6),
        ])
        s.add_all([
            EndClient(id=1, client_id=1, name="Harbour Residences", abbreviation="HR", user_id=4),
            EndClient(id=2, client_id=2, name="Hill Park", abbreviation="HP"),
        ])
        s.add_all([
            Project(id=1, name="Harbour Tower", abbreviation="HT", end_client_id=1),
            Project(id=2, name="Hill Park Block", abbreviation="HPB", end_client_id=2),
        ])
        s.flush()
        s.add(ProjectMember(project_id=1, user_id=5))

        s.add_all([
            Precast(id=TOWER_ID, project_id=1, name="Tower A", naming_convention="TA"),
            Precast(id=FLOOR_1, project_id=1, name="Floor 1", parent_id=TOWER_ID, naming_convention="TA-F1"),
            Precast(id=FLOOR_2, project_id=1, name="Floor 2", parent_id=TOWER_ID, naming_convention="TA-F2"),
            Precast(id=20, project_id=2, name="Block B", naming_convention="BB"),
        ])
        s.add_all([
            ProjectStage(id=76, project_id=1, name="Mould", assigned_to=5, qc_id=3, paper_id=900),
            ProjectStage(id=75, project_id=1, name="Reinforcement", assigned_to=5, qc_id=3, paper_id=901),
            ProjectStage(id=74, project_id=1, name="Casting", assigned_to=5),
            ProjectStage(id=73, project_id=1, name="Curing"),
            ProjectStage(id=77, project_id=1, name="Finishing", paper_id=905),
            ProjectStage(id=90, project_id=2, name="Other project stage"),
        ])
        s.add_all([
            DrawingType(id=1, project_id=1, name="Shop drawing"),
            DrawingType(id=2, project_id=1, name="GA drawing"),
        ])
        s.add_all([
            InvBom(id=1, product_name="Cement", unit="kg", rate=Decimal("5.50")),
            InvBom(id=2, product_name="Rebar", unit="ton", rate=Decimal("650.00")),
        ])
        s.flush()

        tokens = {
            "superadmin": issue_session_token(s, user_id=1, session_id="sid-super", host_name="ws-01", ip_address="10.0.0.1"),
            "admin": issue_session_token(s, user_id=2, session_id="sid-admin", host_name="ws-02", ip_address="10.0.0.2"),
            "viewer": issue_session_token(s, user_id=3, session_id="sid-viewer", host_name="ws-03", ip_address="10.0.0.3"),
            "other_admin": issue_session_token(s, user_id=6, session_id="sid-other", host_name="ws-06"),
        }
        s.commit()

    return SimpleNamespace(
        project_id=1,
        other_project_id=2,
        tower_id=TOWER_ID,
        floor_1=FLOOR_1,
        floor_2=FLOOR_2,
        stage_path=list(STAGE_PATH),
        tokens=tokens,
    )


@pytest.fixture()
def db(session_factory, seed):
    """A service-level session on the seeded database."""
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def projector(session_factory):
    return ActivityProjector(session_factory, "http://precast.test")


@pytest.fixture()
def client(session_factory, seed, projector):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            if s.in_transaction():
                s.rollback()
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_projector] = lambda: projector
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def super_headers(seed):
    return auth(seed.tokens["superadmin"])


@pytest.fixture()
def admin_headers(seed):
    return auth(seed.tokens["admin"])


@pytest.fixture()
def viewer_headers(seed):
    return auth(seed.tokens["viewer"])


def wall_payload(**overrides) -> dict:
    """Create payload: WALL, 3 at floor 1, 2 at floor 2, five-stage path, one drawing, two BOM lines."""
    body = {
        "project_id": 1,
        "element_type": "WALL",
        "element_type_name": "Wall panel",
        "thickness": 0.2,
        "length": 3,
        "height": 2.5,
        "width": 0.2,
        "area": 7.5,
        "volume": 2,
        "mass": 4.8,
        "stage_path": list(STAGE_PATH),
        "hierarchy_quantity": [
            {"hierarchy_id": FLOOR_1, "quantity": 3},
            {"hierarchy_id": FLOOR_2, "quantity": 2},
        ],
        "drawings": [{"drawing_type_id": 1, "file": "wall_rev1.pdf", "comments": "first issue"}],
        "products": [
            {"product_id": 1, "quantity": 120},
            {"product_id": 2, "quantity": 0.3},
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture()
def wall_type_id(client, super_headers):
    resp = client.post("/api/v1/element-types", json=wall_payload(), headers=super_headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]
