"""
Shared pytest fixtures for the CivicTrack test suite.

Provides:
    - app: Flask application (session-scoped), frozen clock + sequential ids
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clock / ids: the injected time and id sources, reset per test
    - ORM helpers (make_*) that build and commit rows directly
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from civictrack import create_app
from civictrack.models import db as _db
from civictrack.models.department import Department
from civictrack.models.issue import ISSUE_STAGE_STATUS, Issue
from civictrack.models.tender import TENDER_STAGE_STATUS, Bid, Tender, WorkProgressRecord
from civictrack.services.transition_validator import Actor

FROZEN_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now=FROZEN_NOW):
        self.current = now

    def now(self):
        return self.current

    def today(self):
        return self.current.date()

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def reset(self):
        self.current = FROZEN_NOW


class SequentialIds:
    """Id factory yielding id-0001, id-0002, …"""

    def __init__(self):
        self.counter = 0

    def __call__(self):
        self.counter += 1
        return f"id-{self.counter:04d}"

    def reset(self):
        self.counter = 0


_CLOCK = FrozenClock()
_IDS = SequentialIds()

ADMIN = Actor(id="admin-1", role="admin")
AREA_SUPER = Actor(id="area-1", role="area_super_admin")
DEPT_ADMIN = Actor(id="dept-admin-1", role="department_admin")
CITIZEN = Actor(id="citizen-1", role="user")
CONTRACTOR_A = Actor(id="contractor-a", role="tender")
CONTRACTOR_B = Actor(id="contractor-b", role="tender")


def headers(actor):
    return {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing", clock=_CLOCK, id_factory=_IDS)


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    _CLOCK.reset()
    _IDS.reset()
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def clock():
    return _CLOCK


@pytest.fixture()
def ids():
    return _IDS


# ── ORM helpers ──────────────────────────────────────────────────────────
# Rows are committed so API requests (own session) see them.


def make_department(code="PWD", category="public_works", **kw):
    dept = Department(
        id=kw.pop("id", _IDS()),
        name=kw.pop("name", f"{code} Department"),
        code=code,
        category=category,
        **kw,
    )
    _db.session.add(dept)
    _db.session.commit()
    return dept


def make_issue(stage="reported", **kw):
    issue = Issue(
        id=kw.pop("id", _IDS()),
        title=kw.pop("title", "Pothole on Main St"),
        reported_by=kw.pop("reported_by", CITIZEN.id),
        workflow_stage=stage,
        status=ISSUE_STAGE_STATUS[stage],
        created_at=FROZEN_NOW,
        updated_at=FROZEN_NOW,
        **kw,
    )
    _db.session.add(issue)
    _db.session.commit()
    return issue


def make_tender(stage="available", source_issue_id=None, **kw):
    tender = Tender(
        id=kw.pop("id", _IDS()),
        title=kw.pop("title", "Resurface Main St"),
        source_issue_id=source_issue_id,
        workflow_stage=stage,
        status=TENDER_STAGE_STATUS[stage],
        created_at=FROZEN_NOW,
        updated_at=FROZEN_NOW,
        **kw,
    )
    _db.session.add(tender)
    _db.session.commit()
    return tender


def make_bid(tender, actor=CONTRACTOR_A, amount="50000.00", status="pending", **kw):
    bid = Bid(
        id=kw.pop("id", _IDS()),
        tender_id=tender.id,
        user_id=actor.id,
        amount=Decimal(amount),
        status=status,
        created_at=FROZEN_NOW,
        updated_at=FROZEN_NOW,
        **kw,
    )
    _db.session.add(bid)
    _db.session.commit()
    return bid


def make_awarded_tender(source_issue_id=None, contractor=CONTRACTOR_A, stage="work_in_progress"):
    return make_tender(
        stage=stage,
        source_issue_id=source_issue_id,
        awarded_contractor_id=contractor.id,
        awarded_amount=Decimal("50000.00"),
        awarded_at=FROZEN_NOW,
    )


def make_progress(tender, progress_type="completion", status="submitted", contractor=CONTRACTOR_A, **kw):
    record = WorkProgressRecord(
        id=kw.pop("id", _IDS()),
        tender_id=tender.id,
        contractor_id=contractor.id,
        progress_type=progress_type,
        title=kw.pop("title", f"{progress_type} report"),
        status=status,
        created_at=FROZEN_NOW,
        updated_at=FROZEN_NOW,
        **kw,
    )
    _db.session.add(record)
    _db.session.commit()
    return record


def reload(model, entity_id):
    """Fresh read, bypassing the identity map."""
    _db.session.expire_all()
    return _db.session.get(model, entity_id)
