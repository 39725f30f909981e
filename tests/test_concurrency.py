"""
Concurrent transition tests: real threads against a file-backed database.

Two officials accepting different bids on the same tender at the same time
must end with exactly one accepted bid and one award.
"""

import threading
from decimal import Decimal

import pytest

from conftest import ADMIN, CONTRACTOR_A, CONTRACTOR_B, DEPT_ADMIN
from civictrack import create_app
from civictrack.models import db
from civictrack.models.audit import AuditLog
from civictrack.models.issue import Issue
from civictrack.models.tender import Bid, Tender
from civictrack.services import workflow_service


@pytest.fixture()
def file_app(tmp_path):
    app = create_app("testing", overrides={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture()
def contested_tender(file_app):
    """Issue + available tender with two pending bids; returns their ids."""
    with file_app.app_context():
        issue = workflow_service.create_entity("issue", ADMIN, {"title": "Collapsed culvert"})["entity"]
        tender = workflow_service.create_entity(
            "tender", DEPT_ADMIN, {"title": "Rebuild culvert", "source_issue_id": issue["id"]},
        )["entity"]
        assert workflow_service.request_transition("tender", tender["id"], "publish", DEPT_ADMIN)["status"] == "applied"
        bid_a = workflow_service.create_entity("bid", CONTRACTOR_A, {"amount": 40000}, tender_id=tender["id"])
        bid_b = workflow_service.create_entity("bid", CONTRACTOR_B, {"amount": 41000}, tender_id=tender["id"])
    return {
        "issue": issue["id"],
        "tender": tender["id"],
        "bids": [bid_a["entity"]["id"], bid_b["entity"]["id"]],
    }


def _run_concurrently(app, calls):
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, call):
        with app.app_context():
            barrier.wait()
            results[index] = call()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_two_accepts_yield_one_award(file_app, contested_tender):
    bid_a, bid_b = contested_tender["bids"]
    results = _run_concurrently(file_app, [
        lambda: workflow_service.request_transition("bid", bid_a, "accept", ADMIN),
        lambda: workflow_service.request_transition("bid", bid_b, "accept", DEPT_ADMIN),
    ])

    statuses = sorted(r["status"] for r in results)
    assert statuses.count("applied") == 1
    assert statuses[0] in ("denied", "error")

    with file_app.app_context():
        bids = Bid.query.filter_by(tender_id=contested_tender["tender"]).all()
        accepted = [b for b in bids if b.status == "accepted"]
        assert len(accepted) == 1
        assert [b.status for b in bids if b is not accepted[0]] == ["rejected"]

        tender = db.session.get(Tender, contested_tender["tender"])
        assert tender.workflow_stage == "awarded"
        assert tender.awarded_contractor_id == accepted[0].user_id
        assert tender.awarded_amount == accepted[0].amount
        assert tender.awarded_amount in (Decimal("40000.00"), Decimal("41000.00"))

        issue = db.session.get(Issue, contested_tender["issue"])
        assert issue.workflow_stage == "contractor_assigned"
        assert issue.current_assignee_id == accepted[0].user_id


def test_repeated_accepts_of_same_bid_award_once(file_app, contested_tender):
    bid_a = contested_tender["bids"][0]
    results = _run_concurrently(file_app, [
        lambda: workflow_service.request_transition("bid", bid_a, "accept", ADMIN),
        lambda: workflow_service.request_transition("bid", bid_a, "accept", ADMIN),
    ])

    assert all(r["status"] == "applied" for r in results)
    assert sorted(r["noop"] for r in results) == [False, True]

    with file_app.app_context():
        assert AuditLog.query.filter_by(action="tender.award").count() == 1
        assert AuditLog.query.filter_by(action="bid.accept").count() == 1
