"""
Entity Store: loading, creating and advancing workflow entities.

The store owns every write to Issue, Tender, Bid and WorkProgressRecord.
``advance`` is the single place a state field changes:

    1. replay check      repeat of the last applied transition → no-op
    2. validator         Deny(reason) → TransitionDenied(reason)
    3. guards            cross-entity preconditions (tender awardable, …)
    4. field writes      next state, coupled status, transition fields
    5. routing           Assignment rows for issue stage changes
    6. audit             one AuditLog row, flushed

Nothing here commits. The workflow facade owns the unit of work, so a
failure anywhere (including in a cascade) rolls back every write.

Usage:
    from civictrack.services import entity_store

    bid = entity_store.load("bid", bid_id)
    result = entity_store.advance("bid", bid, "accept", actor)
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from sqlalchemy import select

from civictrack.core.clock import get_clock, new_id
from civictrack.core.exceptions import (
    ILLEGAL_TRANSITION,
    InvalidValueError,
    NotFoundError,
    TransitionDenied,
)
from civictrack.models import db
from civictrack.models.audit import AuditLog, write_audit
from civictrack.models.department import Department
from civictrack.models.issue import ISSUE_STAGE_STATUS, Issue
from civictrack.models.tender import (
    PROGRESS_TYPES,
    TENDER_AWARDABLE_STAGES,
    TENDER_STAGE_STATUS,
    TENDER_WORK_STAGES,
    Bid,
    Tender,
    WorkProgressRecord,
    check_percentage,
)
from civictrack.services import assignment_router
from civictrack.services.transition_validator import (
    STATE_FIELDS,
    SYSTEM_ROLE,
    is_role_permitted,
    is_settled,
    validate,
)

logger = logging.getLogger(__name__)

MODELS = {
    "issue": Issue,
    "tender": Tender,
    "bid": Bid,
    "work_progress": WorkProgressRecord,
    "department": Department,
}

_LABELS = {
    "issue": "Issue",
    "tender": "Tender",
    "bid": "Bid",
    "work_progress": "WorkProgressRecord",
    "department": "Department",
}

ALREADY_APPLIED = "already_applied"
TENDER_ALREADY_VERIFIED = "tender_already_verified"


@dataclass
class TransitionResult:
    """What ``advance`` did to one entity."""

    entity_type: str
    entity: object
    transition: str
    previous_state: str
    new_state: str
    noop: bool = False
    reason: str | None = None
    diff: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity.id,
            "transition": self.transition,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "noop": self.noop,
            "reason": self.reason,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Loading
# ═════════════════════════════════════════════════════════════════════════════


def model_for(entity_type: str):
    model = MODELS.get(entity_type)
    if model is None:
        raise InvalidValueError(
            f"Unknown entity type: {entity_type}",
            details={"entity_type": f"not in {sorted(MODELS)}"},
        )
    return model


def find(entity_type: str, entity_id: str | None, *, for_update: bool = True):
    """Load one entity or return None.

    With *for_update* the row is read with ``SELECT … FOR UPDATE`` (ignored
    by SQLite) and the identity map copy is refreshed.
    """
    if not entity_id:
        return None
    model = model_for(entity_type)
    stmt = select(model).where(model.id == entity_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.session.execute(stmt).scalar_one_or_none()


def load(entity_type: str, entity_id: str | None, *, for_update: bool = True):
    """Like ``find`` but raises ``NotFoundError`` when the row is absent."""
    entity = find(entity_type, entity_id, for_update=for_update)
    if entity is None:
        raise NotFoundError(resource=_LABELS.get(entity_type, entity_type), resource_id=entity_id)
    return entity


def current_state(entity_type: str, entity) -> str:
    return getattr(entity, STATE_FIELDS[entity_type])


def lock_scope(entity_type: str, entity_id: str) -> list[tuple[str, str]]:
    """
    Lock keys for a transition on one entity: the entity itself plus every
    entity its cascades may touch. ``tender_id`` and ``source_issue_id`` are
    immutable, so reading them without a lock is safe.
    """
    keys = [(entity_type, entity_id)]
    tender = None
    if entity_type in ("bid", "work_progress"):
        child = find(entity_type, entity_id, for_update=False)
        if child is not None:
            tender = find("tender", child.tender_id, for_update=False)
            keys.append(("tender", child.tender_id))
    elif entity_type == "tender":
        tender = find("tender", entity_id, for_update=False)
    if tender is not None and tender.source_issue_id:
        keys.append(("issue", tender.source_issue_id))
    return keys


# ═════════════════════════════════════════════════════════════════════════════
# Advancing
# ═════════════════════════════════════════════════════════════════════════════


def advance(entity_type: str, entity, transition: str, actor, payload: dict | None = None) -> TransitionResult:
    """
    Apply *transition* to an already loaded (and locked) *entity*.

    Raises:
        TransitionDenied: validator or guard refused the request.
        InvalidValueError / NotFoundError: payload or referenced ids are bad.
    """
    payload = payload or {}
    state = current_state(entity_type, entity)

    if _is_replay(entity_type, entity, state, transition, actor):
        logger.info(
            "Replay of %s.%s on %s ignored (already %s)",
            entity_type, transition, entity.id, state,
            extra=_log_extra(entity_type, entity, transition, actor),
        )
        return TransitionResult(entity_type, entity, transition, state, state, noop=True, reason=ALREADY_APPLIED)

    verdict = validate(entity_type, state, transition, actor.role, payload)
    if not verdict.allowed:
        raise TransitionDenied(verdict.reason, entity_type, transition, state, verdict.message)

    guard = _GUARDS.get((entity_type, transition))
    if guard is not None:
        noop_reason = guard(entity, payload)
        if noop_reason:
            logger.info(
                "%s.%s on %s is a no-op: %s", entity_type, transition, entity.id, noop_reason,
                extra=_log_extra(entity_type, entity, transition, actor),
            )
            return TransitionResult(entity_type, entity, transition, state, state, noop=True, reason=noop_reason)

    clock = get_clock()
    diff: dict = {}
    _write(entity, STATE_FIELDS[entity_type], verdict.next_state, diff)
    writer = _WRITERS.get((entity_type, transition))
    if writer is not None:
        writer(entity, actor, payload, clock, diff)
    if entity_type == "issue":
        _write(entity, "status", ISSUE_STAGE_STATUS[entity.workflow_stage], diff)
    elif entity_type == "tender":
        _write(entity, "status", TENDER_STAGE_STATUS[entity.workflow_stage], diff)
    entity.updated_at = clock.now()

    if entity_type == "issue":
        assignment_router.record_stage_entry(entity, actor, notes=payload.get("notes"))

    write_audit(
        entity_type=entity_type,
        entity_id=entity.id,
        action=f"{entity_type}.{transition}",
        actor=actor.id,
        actor_role=actor.role,
        cascade=actor.role == SYSTEM_ROLE,
        diff=diff,
    )
    logger.info(
        "%s %s: %s → %s via %s",
        entity_type, entity.id, state, verdict.next_state, transition,
        extra=_log_extra(entity_type, entity, transition, actor),
    )
    return TransitionResult(entity_type, entity, transition, state, verdict.next_state, diff=diff)


def _is_replay(entity_type: str, entity, state: str, transition: str, actor) -> bool:
    """
    A repeat of the call that produced the current state: the entity sits in
    the transition's target and the last audited change was this transition.
    Self-loop capable transitions never replay.
    """
    if not is_settled(entity_type, state, transition):
        return False
    if not is_role_permitted(entity_type, transition, actor.role):
        return False
    last = (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity.id))
        .order_by(AuditLog.id.desc())
        .first()
    )
    return last is not None and last.action == f"{entity_type}.{transition}"


def _write(entity, attr: str, value, diff: dict) -> None:
    old = getattr(entity, attr)
    if old == value:
        return
    setattr(entity, attr, value)
    diff[attr] = {"old": old, "new": value}


def _log_extra(entity_type, entity, transition, actor) -> dict:
    return {
        "entity_type": entity_type,
        "entity_id": entity.id,
        "transition": transition,
        "actor_role": actor.role,
    }


def _required(payload: dict, key: str, entity_type: str, transition: str):
    value = payload.get(key)
    if value in (None, ""):
        raise InvalidValueError(
            f"{key} is required to '{transition}' {entity_type}",
            details={key: "required"},
        )
    return value


# ── Guards ───────────────────────────────────────────────────────────────────
# A guard raises to refuse, returns a reason string to turn the call into a
# no-op, or returns None to let it proceed.

def _guard_bid_accept(bid: Bid, payload: dict):
    tender = load("tender", bid.tender_id)
    if tender.workflow_stage not in TENDER_AWARDABLE_STAGES:
        raise TransitionDenied(
            ILLEGAL_TRANSITION, "bid", "accept", bid.status,
            f"tender {tender.id} is no longer awardable (stage={tender.workflow_stage})",
        )
    accepted = (
        Bid.query
        .filter(Bid.tender_id == bid.tender_id, Bid.status == "accepted", Bid.id != bid.id)
        .first()
    )
    if accepted is not None:
        raise TransitionDenied(
            ILLEGAL_TRANSITION, "bid", "accept", bid.status,
            f"bid {accepted.id} was already accepted for tender {tender.id}",
        )
    return None


def _guard_progress_approve(record: WorkProgressRecord, payload: dict):
    if record.progress_type != "completion":
        return None
    tender = find("tender", record.tender_id)
    if tender is not None and tender.workflow_stage in ("verified", "completed"):
        return TENDER_ALREADY_VERIFIED
    return None


def _guard_issue_assign_department(issue: Issue, payload: dict):
    department_id = _required(payload, "department_id", "issue", "assign_department")
    if db.session.get(Department, department_id) is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    return None


def _guard_tender_award(tender: Tender, payload: dict):
    _required(payload, "contractor_id", "tender", "award")
    _positive_amount(_required(payload, "amount", "tender", "award"), "amount")
    return None


def _requires(key: str, entity_type: str, transition: str):
    def guard(entity, payload: dict):
        _required(payload, key, entity_type, transition)
        return None
    return guard


_GUARDS = {
    ("bid", "accept"): _guard_bid_accept,
    ("work_progress", "approve"): _guard_progress_approve,
    ("issue", "send_to_area"): _requires("assigned_to", "issue", "send_to_area"),
    ("issue", "assign_department"): _guard_issue_assign_department,
    ("issue", "assign_contractor"): _requires("contractor_id", "issue", "assign_contractor"),
    ("issue", "award_contractor"): _requires("contractor_id", "issue", "award_contractor"),
    ("tender", "award"): _guard_tender_award,
}


# ── Field writers ────────────────────────────────────────────────────────────

def _issue_send_to_area(issue, actor, payload, clock, diff):
    _write(issue, "current_assignee_id", payload["assigned_to"], diff)


def _issue_assign_department(issue, actor, payload, clock, diff):
    _write(issue, "assigned_department_id", payload["department_id"], diff)
    if payload.get("assigned_to"):
        _write(issue, "current_assignee_id", payload["assigned_to"], diff)


def _issue_assign_contractor(issue, actor, payload, clock, diff):
    _write(issue, "current_assignee_id", payload["contractor_id"], diff)


def _issue_resolve(issue, actor, payload, clock, diff):
    if issue.resolved_at is None:
        _write(issue, "resolved_at", clock.now(), diff)
    if issue.actual_resolution_date is None:
        _write(issue, "actual_resolution_date", clock.today(), diff)


def _tender_award(tender, actor, payload, clock, diff):
    _write(tender, "awarded_contractor_id", payload["contractor_id"], diff)
    _write(tender, "awarded_amount", _positive_amount(payload["amount"], "amount"), diff)
    _write(tender, "awarded_at", clock.now(), diff)


def _tender_start_work(tender, actor, payload, clock, diff):
    if tender.work_started_at is None:
        _write(tender, "work_started_at", clock.now(), diff)


def _tender_verify_completion(tender, actor, payload, clock, diff):
    if tender.completion_date is None:
        _write(tender, "completion_date", clock.today(), diff)


def _bid_decide(bid, actor, payload, clock, diff):
    _write(bid, "decided_at", clock.now(), diff)


def _progress_submit(record, actor, payload, clock, diff):
    if payload.get("progress_percentage") is not None:
        _write(record, "progress_percentage", check_percentage(payload["progress_percentage"]), diff)


def _progress_verify(record, actor, payload, clock, diff):
    _write(record, "verified_by", actor.id, diff)
    _write(record, "verified_at", clock.now(), diff)
    if payload.get("notes") is not None:
        _write(record, "verification_notes", payload["notes"], diff)


def _progress_revise(record, actor, payload, clock, diff):
    _write(record, "verified_by", None, diff)
    _write(record, "verified_at", None, diff)


_WRITERS = {
    ("issue", "send_to_area"): _issue_send_to_area,
    ("issue", "assign_department"): _issue_assign_department,
    ("issue", "assign_contractor"): _issue_assign_contractor,
    ("issue", "award_contractor"): _issue_assign_contractor,
    ("issue", "resolve"): _issue_resolve,
    ("issue", "verify_resolution"): _issue_resolve,
    ("tender", "award"): _tender_award,
    ("tender", "start_work"): _tender_start_work,
    ("tender", "verify_completion"): _tender_verify_completion,
    ("bid", "accept"): _bid_decide,
    ("bid", "reject"): _bid_decide,
    ("bid", "withdraw"): _bid_decide,
    ("work_progress", "submit"): _progress_submit,
    ("work_progress", "approve"): _progress_verify,
    ("work_progress", "reject"): _progress_verify,
    ("work_progress", "revise"): _progress_revise,
}


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


def create_department(actor, data: dict) -> Department:
    name = _required(data, "name", "department", "create")
    code = _required(data, "code", "department", "create")
    if Department.query.filter_by(code=code).first() is not None:
        raise InvalidValueError(f"Department code '{code}' already exists", details={"code": "duplicate"})
    now = get_clock().now()
    department = Department(
        id=new_id(),
        name=name,
        code=code,
        category=_required(data, "category", "department", "create"),
        description=data.get("description", ""),
        contact_email=data.get("contact_email"),
        contact_phone=data.get("contact_phone"),
        created_at=now,
        updated_at=now,
    )
    return _insert("department", department, actor)


def create_issue(actor, data: dict) -> Issue:
    now = get_clock().now()
    issue = Issue(
        id=new_id(),
        title=_required(data, "title", "issue", "create"),
        description=data.get("description", ""),
        category=data.get("category"),
        reported_by=actor.id,
        status="reported",
        workflow_stage="reported",
        created_at=now,
        updated_at=now,
    )
    return _insert("issue", issue, actor)


def create_tender(actor, data: dict) -> Tender:
    source_issue_id = data.get("source_issue_id")
    if source_issue_id:
        load("issue", source_issue_id, for_update=False)
    department_id = data.get("department_id")
    if department_id and db.session.get(Department, department_id) is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    estimated = data.get("estimated_amount")
    now = get_clock().now()
    tender = Tender(
        id=new_id(),
        title=_required(data, "title", "tender", "create"),
        description=data.get("description", ""),
        source_issue_id=source_issue_id,
        department_id=department_id,
        estimated_amount=_positive_amount(estimated, "estimated_amount") if estimated is not None else None,
        created_by=actor.id,
        status="draft",
        workflow_stage="created",
        created_at=now,
        updated_at=now,
    )
    return _insert("tender", tender, actor)


def place_bid(actor, tender_id: str, data: dict) -> Bid:
    """Bids are accepted only while the tender is ``available``."""
    tender = load("tender", tender_id)
    if tender.workflow_stage != "available":
        raise InvalidValueError(
            f"Tender {tender.id} is not open for bids (stage={tender.workflow_stage})",
            details={"tender.workflow_stage": tender.workflow_stage},
        )
    now = get_clock().now()
    bid = Bid(
        id=new_id(),
        tender_id=tender.id,
        user_id=actor.id,
        amount=_positive_amount(_required(data, "amount", "bid", "create"), "amount"),
        proposal=data.get("proposal", ""),
        status="pending",
        created_at=now,
        updated_at=now,
    )
    return _insert("bid", bid, actor)


def create_progress_record(actor, tender_id: str, data: dict) -> WorkProgressRecord:
    """Only the awarded contractor may report, and only once work has been awarded."""
    tender = load("tender", tender_id)
    if tender.workflow_stage not in TENDER_WORK_STAGES:
        raise InvalidValueError(
            f"Tender {tender.id} has no awarded work in progress (stage={tender.workflow_stage})",
            details={"tender.workflow_stage": tender.workflow_stage},
        )
    if actor.id != tender.awarded_contractor_id:
        raise InvalidValueError(
            f"Only the awarded contractor may report progress on tender {tender.id}",
            details={"contractor_id": "not the awarded contractor"},
        )
    status = data.get("status", "submitted")
    if status not in ("draft", "submitted"):
        raise InvalidValueError(
            "A progress record starts as draft or submitted",
            details={"status": "not in ['draft', 'submitted']"},
        )
    progress_type = _required(data, "progress_type", "work_progress", "create")
    if progress_type not in PROGRESS_TYPES:
        raise InvalidValueError(
            f"progress_type must be one of {', '.join(PROGRESS_TYPES)} (got {progress_type!r})",
            details={"progress_type": f"not in {list(PROGRESS_TYPES)}"},
        )
    now = get_clock().now()
    record = WorkProgressRecord(
        id=new_id(),
        tender_id=tender.id,
        contractor_id=actor.id,
        progress_type=progress_type,
        title=_required(data, "title", "work_progress", "create"),
        description=data.get("description", ""),
        progress_percentage=check_percentage(data.get("progress_percentage")),
        status=status,
        created_at=now,
        updated_at=now,
    )
    return _insert("work_progress", record, actor)


def _insert(entity_type: str, entity, actor):
    db.session.add(entity)
    db.session.flush()
    write_audit(
        entity_type=entity_type,
        entity_id=entity.id,
        action=f"{entity_type}.create",
        actor=actor.id,
        actor_role=actor.role,
    )
    logger.info(
        "%s %s created", _LABELS[entity_type], entity.id,
        extra={"entity_type": entity_type, "entity_id": entity.id, "actor_role": actor.role},
    )
    return entity


def _positive_amount(value, field_name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise InvalidValueError(f"{field_name} must be a number", details={field_name: "not numeric"})
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidValueError(f"{field_name} must be a number", details={field_name: "not numeric"}) from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidValueError(f"{field_name} must be greater than 0", details={field_name: "not positive"})
    return amount
