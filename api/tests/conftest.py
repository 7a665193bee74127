import pytest
from types import SimpleNamespace
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plantdesk.main import app
from plantdesk.db import Base, get_db
from plantdesk.auth import verify_bearer_token
from plantdesk.models import ApprovalGrant, Area, Person, Plant
from plantdesk.rbac import ROLE_PERMS, Actor
from plantdesk.workflow import WorkflowEngine

# Use in-memory SQLite for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

AREA = 10
OTHER_AREA = 20


def chat_id(ch: str) -> str:
    return "U" + ch * 32


class RecordingPublisher:
    """Collects published events instead of queueing them."""

    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    @property
    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture(scope="function")
def db_session():
    """
    Creates a fresh database session for a test.
    Creates tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    return TestingSessionLocal


@pytest.fixture
def seed(db_session):
    """
    One plant with two areas.

    Area 10: tech L1, engineer L2, engineer2 L2, manager L3, retired L3 (inactive person).
    Area 20: outsider L3 only.
    """
    db_session.add(Plant(id=1, code="P1", name="Plant One"))
    db_session.add_all([
        Area(id=AREA, plant_id=1, code="PKG", name="Packaging"),
        Area(id=OTHER_AREA, plant_id=1, code="UTL", name="Utilities"),
    ])
    db_session.add_all([
        Person(id=1, first_name="Rita", last_name="Reporter", email="rita@plant.test", chat_user_id=chat_id("a")),
        Person(id=2, first_name="Eli", last_name="Engineer", email="eli@plant.test", chat_user_id=chat_id("b")),
        Person(id=3, first_name="Mona", last_name="Manager", email="mona@plant.test", chat_user_id=chat_id("c")),
        Person(id=4, display_name="Tom Tech", email="tom@plant.test"),
        Person(id=5, display_name="Eve Engineer", email="eve@plant.test"),
        Person(id=6, display_name="Retired Manager", email="old@plant.test", is_active=False),
        Person(id=7, display_name="Otto Outsider", email="otto@plant.test"),
    ])
    db_session.add_all([
        ApprovalGrant(person_id=4, area_id=AREA, approval_level=1),
        ApprovalGrant(person_id=2, area_id=AREA, approval_level=2),
        ApprovalGrant(person_id=5, area_id=AREA, approval_level=2),
        ApprovalGrant(person_id=3, area_id=AREA, approval_level=3),
        ApprovalGrant(person_id=6, area_id=AREA, approval_level=3),
        ApprovalGrant(person_id=7, area_id=OTHER_AREA, approval_level=3),
    ])
    db_session.commit()
    return SimpleNamespace(
        area=AREA,
        other_area=OTHER_AREA,
        reporter=1,
        engineer=2,
        manager=3,
        tech=4,
        engineer2=5,
        retired=6,
        outsider=7,
    )


@pytest.fixture
def actor_for():
    def make(person_id: int, role: str = "operator") -> Actor:
        return Actor(person_id=person_id, permissions=frozenset(ROLE_PERMS[role]))
    return make


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def workflow(db_session, publisher):
    return WorkflowEngine(db_session, publisher=publisher)


@pytest.fixture(scope="function")
def client(db_session, publisher):
    """
    TestClient with overridden database and auth dependencies.

    The caller picks the identity with `x-person-id` and `x-roles` headers.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    async def override_verify_token(request: Request):
        claims = {"roles": [r for r in request.headers.get("x-roles", "operator").split(",") if r]}
        if request.headers.get("x-person-id"):
            claims["sub"] = request.headers["x-person-id"]
        return claims

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[verify_bearer_token] = override_verify_token
    app.state.notifier = publisher

    # no lifespan: the notification worker and file database stay out of tests
    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.notifier = None
