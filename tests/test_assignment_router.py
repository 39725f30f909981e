"""
Assignment Router tests.

Covers:
    - the three routing stages each materialize one active Assignment
    - re-entering a stage completes the prior active row of that type
    - non-routing stages write nothing
    - sequence ordering / list_active_assignments order
"""

import pytest

from conftest import (
    ADMIN,
    AREA_SUPER,
    CONTRACTOR_A,
    DEPT_ADMIN,
    make_department,
    make_issue,
    reload,
)
from civictrack.core.exceptions import NotFoundError
from civictrack.models import db
from civictrack.models.issue import Assignment, Issue
from civictrack.services import assignment_router, workflow_service


def _route_to_contractor(issue_id, department_id):
    steps = [
        ("send_to_area", ADMIN, {"assigned_to": AREA_SUPER.id, "notes": "Ward 7"}),
        ("assign_department", AREA_SUPER, {"department_id": department_id, "assigned_to": DEPT_ADMIN.id}),
        ("assign_contractor", DEPT_ADMIN, {"contractor_id": CONTRACTOR_A.id}),
    ]
    for transition, actor, payload in steps:
        result = workflow_service.request_transition("issue", issue_id, transition, actor, payload)
        assert result["status"] == "applied", result


class TestRouting:
    def test_full_route_creates_one_row_per_hand_off(self):
        dept = make_department()
        issue = make_issue()
        _route_to_contractor(issue.id, dept.id)

        rows = Assignment.query.filter_by(issue_id=issue.id).order_by(Assignment.sequence).all()
        assert [r.assignment_type for r in rows] == [
            "admin_to_area", "area_to_department", "department_to_contractor",
        ]
        assert [r.sequence for r in rows] == [1, 2, 3]
        assert all(r.status == "active" for r in rows)

    def test_rows_record_who_handed_off_to_whom(self):
        dept = make_department()
        issue = make_issue()
        _route_to_contractor(issue.id, dept.id)

        area, department, contractor = (
            Assignment.query.filter_by(issue_id=issue.id).order_by(Assignment.sequence).all()
        )
        assert (area.assigned_by, area.assigned_to) == (ADMIN.id, AREA_SUPER.id)
        assert area.assignment_notes == "Ward 7"
        assert department.assigned_department_id == dept.id
        assert department.assigned_to == DEPT_ADMIN.id
        assert (contractor.assigned_by, contractor.assigned_to) == (DEPT_ADMIN.id, CONTRACTOR_A.id)

    def test_non_routing_stage_writes_nothing(self):
        issue = make_issue(stage="contractor_assigned", current_assignee_id=CONTRACTOR_A.id)
        result = workflow_service.request_transition("issue", issue.id, "start_work", CONTRACTOR_A)
        assert result["status"] == "applied"
        assert Assignment.query.filter_by(issue_id=issue.id).count() == 0

    def test_denied_transition_writes_no_assignment(self):
        issue = make_issue()
        result = workflow_service.request_transition(
            "issue", issue.id, "send_to_area", AREA_SUPER, {"assigned_to": AREA_SUPER.id},
        )
        assert result["status"] == "denied"
        assert Assignment.query.count() == 0


class TestStageReentry:
    def test_reentry_completes_prior_active_row(self, clock):
        issue = make_issue(stage="contractor_assigned", current_assignee_id=CONTRACTOR_A.id)
        first = assignment_router.record_stage_entry(issue, DEPT_ADMIN)
        clock.advance(hours=2)
        issue.current_assignee_id = "contractor-c"
        second = assignment_router.record_stage_entry(issue, DEPT_ADMIN, notes="reassigned")
        db.session.commit()

        first = reload(Assignment, first.id)
        assert first.status == "completed"
        assert second.status == "active"
        assert second.sequence == first.sequence + 1
        assert second.assigned_to == "contractor-c"
        assert Assignment.query.filter_by(issue_id=issue.id, status="active").count() == 1

    def test_reentry_leaves_other_types_active(self):
        issue = make_issue(stage="area_review", current_assignee_id=AREA_SUPER.id)
        area = assignment_router.record_stage_entry(issue, ADMIN)
        issue.workflow_stage = "contractor_assigned"
        assignment_router.record_stage_entry(issue, DEPT_ADMIN)
        assignment_router.record_stage_entry(issue, DEPT_ADMIN)
        db.session.commit()

        assert reload(Assignment, area.id).status == "active"
        active = assignment_router.active_assignments(issue.id)
        assert [a.assignment_type for a in active] == ["admin_to_area", "department_to_contractor"]

    def test_unrouted_stage_returns_none(self):
        issue = make_issue(stage="in_progress")
        assert assignment_router.record_stage_entry(issue, DEPT_ADMIN) is None


class TestActiveAssignments:
    def test_listed_in_creation_order(self):
        dept = make_department()
        issue = make_issue()
        _route_to_contractor(issue.id, dept.id)

        items = workflow_service.list_active_assignments(issue.id)
        assert [i["sequence"] for i in items] == [1, 2, 3]
        assert items[-1]["assignment_type"] == "department_to_contractor"

    def test_issue_stage_matches_route(self):
        dept = make_department()
        issue = make_issue()
        _route_to_contractor(issue.id, dept.id)

        issue = reload(Issue, issue.id)
        assert issue.workflow_stage == "contractor_assigned"
        assert issue.status == "in_progress"
        assert issue.current_assignee_id == CONTRACTOR_A.id

    def test_unknown_issue_raises(self):
        with pytest.raises(NotFoundError) as exc:
            workflow_service.list_active_assignments("missing")
        assert exc.value.resource_id == "missing"
