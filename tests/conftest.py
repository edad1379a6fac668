import os
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

_tmp_dir = tempfile.mkdtemp(prefix="civicflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'app.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_tmp_dir, "uploads")
os.environ["AWS_ACCESS_KEY_ID"] = ""
os.environ["FIREBASE_SERVICE_ACCOUNT_PATH"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.database import Base, build_engine, get_db
from app.models import Area, Department, User
from app.schemas import Actor, IssueCreate, TenderCreate, BidCreate
from app.services.gamification import gamification_service
from app.services.notifications import notification_service
from app.services.workflow import WorkflowEngine
from app.utils.rate_limiter import limiter
from app.utils.security import create_access_token


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'workflow.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture(autouse=True)
def side_channels(monkeypatch, session_factory):
    """Point the notification feed and points counter at the test database"""
    monkeypatch.setattr(notification_service, "_session_factory", session_factory)
    monkeypatch.setattr(gamification_service, "_session_factory", session_factory)
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def engine(db):
    return WorkflowEngine(db)


def _user(db, email, role, name, area=None, department=None):
    user = User(
        email=email,
        name=name,
        hashed_password="not-a-real-hash",
        role=role,
        is_active=True,
        is_verified=True,
        assigned_area_id=area.id if area else None,
        assigned_department_id=department.id if department else None,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def seed(db):
    """Two areas, three departments and one user per role (plus out-of-scope admins)"""
    central = Area(name="Central Ward", district="Central", state="Metro")
    north = Area(name="North Ward", district="North", state="Metro")
    roads = Department(name="Public Works - Roads", category="roads", is_active=True)
    water = Department(name="Water & Utilities", category="utilities", is_active=True)
    closed = Department(name="Old Sanitation Board", category="environment", is_active=False)
    db.add_all([central, north, roads, water, closed])
    db.flush()

    users = {
        "citizen": _user(db, "citizen@example.com", "citizen", "Asha Citizen"),
        "neighbour": _user(db, "neighbour@example.com", "citizen", "Ravi Neighbour"),
        "admin": _user(db, "admin@example.com", "admin", "City Admin"),
        "area_admin": _user(db, "central@example.com", "area_super_admin", "Central Admin", area=central),
        "other_area_admin": _user(db, "north@example.com", "area_super_admin", "North Admin", area=north),
        "dept_admin": _user(db, "roads@example.com", "department_admin", "Roads Admin", department=roads),
        "other_dept_admin": _user(db, "water@example.com", "department_admin", "Water Admin", department=water),
        "contractor": _user(db, "builder@example.com", "contractor", "Builder Co"),
        "other_contractor": _user(db, "paver@example.com", "contractor", "Paver Ltd"),
    }
    db.commit()

    ns = SimpleNamespace(central=central, north=north, roads=roads, water=water, closed=closed, users=users)
    for key, user in users.items():
        setattr(ns, key, Actor.model_validate(user))
    return ns


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(email: str) -> dict:
    token = create_access_token(data={"sub": email})
    return {"Authorization": f"Bearer {token}"}


def future(days: int = 30) -> datetime:
    return datetime.utcnow() + timedelta(days=days)


def issue_payload(**overrides) -> IssueCreate:
    data = {
        "title": "Pothole on MG Road",
        "description": "Deep pothole near the bus stop, two scooters fell this week",
        "category": "roads",
        "priority": "urgent",
        "location_name": "MG Road bus stop",
        "area": "Central Ward",
        "ward": "12",
        "latitude": 12.9716,
        "longitude": 77.5946,
    }
    data.update(overrides)
    return IssueCreate(**data)


def tender_payload(**overrides) -> TenderCreate:
    data = {
        "title": "Resurface MG Road stretch",
        "description": "Fill and resurface 40 sq m around the bus stop",
        "estimated_budget_min": 3000,
        "estimated_budget_max": 8000,
        "deadline_date": future(30),
        "requirements": ["Licensed road contractor"],
    }
    data.update(overrides)
    return TenderCreate(**data)


@pytest.fixture
def assigned_issue(engine, seed):
    """An issue handed to the roads department"""
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    engine.assign_to_department(seed.area_admin, issue.id, seed.roads.id, "Roads job")
    return issue


@pytest.fixture
def open_tender(engine, seed, assigned_issue):
    """A tender on the assigned issue with a bid from each contractor"""
    tender = engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload())
    bid = engine.submit_bid(seed.contractor, tender.id, BidCreate(amount=5000, timeline="10 days"))
    other_bid = engine.submit_bid(seed.other_contractor, tender.id, BidCreate(amount=4500, timeline="14 days"))
    return SimpleNamespace(tender=tender, bid=bid, other_bid=other_bid, issue=assigned_issue)


@pytest.fixture
def tender_in_progress(engine, seed, open_tender):
    engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.bid.id)
    engine.start_work(seed.contractor, open_tender.tender.id)
    return open_tender
