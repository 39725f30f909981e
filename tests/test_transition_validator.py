"""
Transition Validator tests: pure, no database.

Covers:
    - every table edge is allowed for a permitted role
    - every structurally invalid (state, transition) pair → illegal_transition
    - illegal pairs deny with illegal_transition even for forbidden roles
    - legal pairs with a forbidden role → forbidden_role
    - progress_percentage range / type checks → invalid_value
    - available_transitions discovery
"""

import pytest

from civictrack.core.exceptions import FORBIDDEN_ROLE, ILLEGAL_TRANSITION, INVALID_VALUE
from civictrack.models.issue import ISSUE_TRANSITIONS, ISSUE_WORKFLOW_STAGES
from civictrack.models.tender import (
    BID_STATUSES,
    BID_TRANSITIONS,
    PROGRESS_STATUSES,
    PROGRESS_TRANSITIONS,
    TENDER_TRANSITIONS,
    TENDER_WORKFLOW_STAGES,
)
from civictrack.services.transition_validator import (
    SYSTEM_ROLE,
    _TRANSITION_ROLES,
    available_transitions,
    can_create,
    is_role_permitted,
    transition_target,
    validate,
)

MACHINES = {
    "issue": (ISSUE_TRANSITIONS, ISSUE_WORKFLOW_STAGES),
    "tender": (TENDER_TRANSITIONS, TENDER_WORKFLOW_STAGES),
    "bid": (BID_TRANSITIONS, BID_STATUSES),
    "work_progress": (PROGRESS_TRANSITIONS, PROGRESS_STATUSES),
}


def _valid_edges():
    for entity_type, (table, _states) in MACHINES.items():
        for transition, rule in table.items():
            for source in rule["from"]:
                yield entity_type, source, transition, rule["to"]


def _invalid_edges():
    for entity_type, (table, states) in MACHINES.items():
        for transition, rule in table.items():
            for source in states:
                if source not in rule["from"]:
                    yield entity_type, source, transition


def _a_permitted_role(entity_type, transition):
    return sorted(_TRANSITION_ROLES[entity_type][transition])[0]


# ═════════════════════════════════════════════════════════════════════════════
# Table edges
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("entity_type,source,transition,target", list(_valid_edges()))
def test_valid_edge_is_allowed(entity_type, source, transition, target):
    verdict = validate(entity_type, source, transition, _a_permitted_role(entity_type, transition))
    assert verdict.allowed
    assert verdict.next_state == target
    assert verdict.reason is None


@pytest.mark.parametrize("entity_type,source,transition", list(_invalid_edges()))
def test_invalid_edge_is_illegal_for_every_role(entity_type, source, transition):
    for role in ("user", "admin", "department_admin", "tender", SYSTEM_ROLE):
        verdict = validate(entity_type, source, transition, role)
        assert not verdict.allowed
        assert verdict.reason == ILLEGAL_TRANSITION


def test_unknown_transition_is_illegal():
    verdict = validate("bid", "pending", "teleport", "admin")
    assert verdict.reason == ILLEGAL_TRANSITION


def test_unknown_entity_type_is_illegal():
    verdict = validate("streetlight", "on", "switch_off", "admin")
    assert verdict.reason == ILLEGAL_TRANSITION


def test_rejected_bid_cannot_be_accepted_by_anyone():
    for role in ("admin", "department_admin", SYSTEM_ROLE):
        assert validate("bid", "rejected", "accept", role).reason == ILLEGAL_TRANSITION


# ═════════════════════════════════════════════════════════════════════════════
# Roles
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("role", ["user", "tender", "area_super_admin"])
def test_accept_bid_forbidden_for_non_admin_roles(role):
    verdict = validate("bid", "pending", "accept", role)
    assert not verdict.allowed
    assert verdict.reason == FORBIDDEN_ROLE


def test_citizen_cannot_route_issue():
    verdict = validate("issue", "reported", "send_to_area", "user")
    assert verdict.reason == FORBIDDEN_ROLE


def test_area_supervisor_assigns_department():
    assert validate("issue", "area_review", "assign_department", "area_super_admin").allowed


@pytest.mark.parametrize("entity_type,transition,source", [
    ("tender", "award", "available"),
    ("tender", "verify_completion", "work_completed"),
    ("issue", "award_contractor", "department_assigned"),
    ("issue", "verify_resolution", "department_review"),
])
def test_cascade_only_transitions_refuse_collaborators(entity_type, transition, source):
    for role in ("admin", "department_admin", "tender"):
        assert validate(entity_type, source, transition, role).reason == FORBIDDEN_ROLE
    assert validate(entity_type, source, transition, SYSTEM_ROLE).allowed


def test_system_may_reject_but_not_accept_bids():
    assert validate("bid", "pending", "reject", SYSTEM_ROLE).allowed
    assert validate("bid", "pending", "accept", SYSTEM_ROLE).reason == FORBIDDEN_ROLE


def test_contractor_withdraws_own_bid_role():
    assert validate("bid", "pending", "withdraw", "tender").allowed
    assert validate("bid", "pending", "withdraw", "admin").reason == FORBIDDEN_ROLE


def test_is_role_permitted_and_target():
    assert is_role_permitted("work_progress", "approve", "department_admin")
    assert not is_role_permitted("work_progress", "approve", "tender")
    assert transition_target("work_progress", "approve") == "approved"
    assert transition_target("work_progress", "nope") is None


# ═════════════════════════════════════════════════════════════════════════════
# Payload values
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("value", [0, 50, 100, 99.5])
def test_percentage_in_range_allowed(value):
    verdict = validate("work_progress", "draft", "submit", "tender", {"progress_percentage": value})
    assert verdict.allowed


@pytest.mark.parametrize("value", [-1, 101, 150.0, "80", True])
def test_percentage_out_of_range_or_not_numeric(value):
    verdict = validate("work_progress", "draft", "submit", "tender", {"progress_percentage": value})
    assert not verdict.allowed
    assert verdict.reason == INVALID_VALUE


def test_illegal_pair_wins_over_bad_payload():
    verdict = validate("work_progress", "approved", "submit", "tender", {"progress_percentage": 500})
    assert verdict.reason == ILLEGAL_TRANSITION


def test_forbidden_role_wins_over_bad_payload():
    verdict = validate("work_progress", "draft", "submit", "admin", {"progress_percentage": 500})
    assert verdict.reason == FORBIDDEN_ROLE


def test_validation_is_repeatable():
    first = validate("tender", "created", "publish", "admin")
    second = validate("tender", "created", "publish", "admin")
    assert first == second


# ═════════════════════════════════════════════════════════════════════════════
# Discovery / creation roles
# ═════════════════════════════════════════════════════════════════════════════


def test_available_transitions_for_submitted_record():
    names = [t["transition"] for t in available_transitions("work_progress", "submitted")]
    assert names == ["approve", "reject"]


def test_available_transitions_filtered_by_role():
    items = available_transitions("tender", "available", "department_admin")
    assert [t["transition"] for t in items] == ["close_bidding"]
    assert items[0]["to"] == "bidding_closed"


def test_available_transitions_terminal_state():
    assert available_transitions("bid", "accepted") == []


def test_creation_roles():
    assert can_create("issue", "user")
    assert can_create("bid", "tender")
    assert not can_create("tender", "tender")
    assert not can_create("department", "department_admin")
