"""
Transition Validator: pure, table-driven verdicts.

Given (entity_type, current_state, transition, actor_role, payload) the
validator answers Allow(next_state) or Deny(reason). It never touches the
database and holds no state, so the same inputs always give the same
verdict.

Check order:
    1. (state, transition) pair must be in the entity's transition table
       → otherwise ``illegal_transition`` (for every role)
    2. actor role must be in the transition's role set
       → otherwise ``forbidden_role``
    3. numeric payload fields must be numbers inside their range
       → otherwise ``invalid_value``

Usage:
    from civictrack.services.transition_validator import validate

    verdict = validate("bid", "pending", "accept", "department_admin")
    if verdict.allowed:
        bid.status = verdict.next_state
"""

from dataclasses import dataclass

from civictrack.core.exceptions import FORBIDDEN_ROLE, ILLEGAL_TRANSITION, INVALID_VALUE
from civictrack.models.issue import ISSUE_TRANSITIONS
from civictrack.models.tender import (
    BID_TRANSITIONS,
    PROGRESS_PERCENTAGE_RANGE,
    PROGRESS_TRANSITIONS,
    TENDER_TRANSITIONS,
)

# ── Roles ────────────────────────────────────────────────────────────────────

COLLABORATOR_ROLES = ("user", "admin", "area_super_admin", "department_admin", "tender")

# Internal role of the cascade engine; never accepted from a request.
SYSTEM_ROLE = "system"

# ── Tables ───────────────────────────────────────────────────────────────────

ENTITY_TYPES = ("issue", "tender", "bid", "work_progress")

TRANSITION_TABLES = {
    "issue": ISSUE_TRANSITIONS,
    "tender": TENDER_TRANSITIONS,
    "bid": BID_TRANSITIONS,
    "work_progress": PROGRESS_TRANSITIONS,
}

STATE_FIELDS = {
    "issue": "workflow_stage",
    "tender": "workflow_stage",
    "bid": "status",
    "work_progress": "status",
}

_TRANSITION_ROLES = {
    "issue": {
        "send_to_area": {"admin"},
        "assign_department": {"admin", "area_super_admin"},
        "assign_contractor": {"admin", "department_admin"},
        "start_work": {"department_admin", "tender"},
        "submit_for_review": {"department_admin", "tender"},
        "return_to_contractor": {"department_admin"},
        "resolve": {"admin", "department_admin"},
        "award_contractor": {SYSTEM_ROLE},
        "verify_resolution": {SYSTEM_ROLE},
    },
    "tender": {
        "publish": {"admin", "department_admin"},
        "close_bidding": {"admin", "department_admin"},
        "start_review": {"admin", "department_admin"},
        "award": {SYSTEM_ROLE},
        "start_work": {"department_admin", "tender"},
        "mark_work_completed": {"department_admin", "tender"},
        "verify_completion": {SYSTEM_ROLE},
        "close": {"admin", "department_admin"},
    },
    "bid": {
        "accept": {"admin", "department_admin"},
        "reject": {"admin", "department_admin", SYSTEM_ROLE},
        "withdraw": {"tender"},
    },
    "work_progress": {
        "submit": {"tender"},
        "approve": {"admin", "department_admin"},
        "reject": {"admin", "department_admin"},
        "revise": {"tender"},
    },
}

# Who may create each kind of record
CREATION_ROLES = {
    "department": {"admin"},
    "issue": {"user", "admin", "area_super_admin", "department_admin"},
    "tender": {"admin", "department_admin"},
    "bid": {"tender"},
    "work_progress": {"tender"},
}

# Payload fields checked against a closed numeric range
_NUMERIC_RANGES = {
    "progress_percentage": PROGRESS_PERCENTAGE_RANGE,
}


@dataclass(frozen=True)
class Actor:
    """Pre-authenticated caller: an opaque id plus one role."""

    id: str
    role: str

    def as_system(self) -> "Actor":
        """The same actor acting through the cascade engine."""
        return Actor(id=self.id, role=SYSTEM_ROLE)


@dataclass(frozen=True)
class Verdict:
    """Outcome of a validation: Allow(next_state) or Deny(reason)."""

    allowed: bool
    next_state: str | None = None
    reason: str | None = None
    message: str | None = None

    @classmethod
    def allow(cls, next_state: str) -> "Verdict":
        return cls(allowed=True, next_state=next_state)

    @classmethod
    def deny(cls, reason: str, message: str) -> "Verdict":
        return cls(allowed=False, reason=reason, message=message)


def validate(
    entity_type: str,
    current_state: str,
    transition: str,
    actor_role: str,
    payload: dict | None = None,
) -> Verdict:
    """Return the verdict for applying *transition* to an entity in *current_state*."""
    table = TRANSITION_TABLES.get(entity_type)
    if table is None:
        return Verdict.deny(ILLEGAL_TRANSITION, f"Unknown entity type: {entity_type}")

    rule = table.get(transition)
    if not rule:
        return Verdict.deny(ILLEGAL_TRANSITION, f"Unknown transition: {transition}")
    if current_state not in rule["from"]:
        return Verdict.deny(
            ILLEGAL_TRANSITION,
            f"Cannot '{transition}' {entity_type} from '{current_state}'",
        )

    if not is_role_permitted(entity_type, transition, actor_role):
        return Verdict.deny(
            FORBIDDEN_ROLE,
            f"Role '{actor_role}' may not '{transition}' {entity_type}",
        )

    problem = _check_numeric_fields(payload)
    if problem:
        return Verdict.deny(INVALID_VALUE, problem)

    return Verdict.allow(rule["to"])


def transition_target(entity_type: str, transition: str) -> str | None:
    rule = TRANSITION_TABLES.get(entity_type, {}).get(transition)
    return rule["to"] if rule else None


def is_settled(entity_type: str, state: str, transition: str) -> bool:
    """True when *state* is where *transition* ends and not a state it can start from."""
    rule = TRANSITION_TABLES.get(entity_type, {}).get(transition)
    return bool(rule) and state == rule["to"] and state not in rule["from"]


def is_role_permitted(entity_type: str, transition: str, actor_role: str) -> bool:
    return actor_role in _TRANSITION_ROLES.get(entity_type, {}).get(transition, set())


def available_transitions(entity_type: str, state: str, actor_role: str | None = None) -> list[dict]:
    """
    List the transitions legal from *state*, optionally filtered by role.

    Returns:
        [{"transition", "to", "roles"}] in table order.
    """
    result = []
    for name, rule in TRANSITION_TABLES.get(entity_type, {}).items():
        if state not in rule["from"]:
            continue
        roles = _TRANSITION_ROLES[entity_type][name]
        if actor_role is not None and actor_role not in roles:
            continue
        result.append({"transition": name, "to": rule["to"], "roles": sorted(roles)})
    return result


def can_create(record_type: str, actor_role: str) -> bool:
    return actor_role in CREATION_ROLES.get(record_type, set())


def _check_numeric_fields(payload: dict | None) -> str | None:
    if not payload:
        return None
    for field, (low, high) in _NUMERIC_RANGES.items():
        if field not in payload or payload[field] is None:
            continue
        value = payload[field]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"{field} must be a number"
        if not low <= value <= high:
            return f"{field} must be between {low} and {high} (got {value})"
    return None
