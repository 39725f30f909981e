"""
Workflow facade: the API collaborators call.

``request_transition`` runs one unit of work:

    lock scope → acquire locks (rank order) → load → advance → cascade
    → build result → commit (still holding the locks)

Any exception rolls the session back, so either every write of the call
(cascades included) is committed or none is. Errors come back as result
dicts rather than exceptions:

    {"status": "applied", "entity", "noop", "reason", "cascade", "warnings"}
    {"status": "denied",  "reason", "message"}
    {"status": "error",   "kind", "message", "retryable"}

Reads (``get_entity``, ``list_active_assignments``) take no locks.
"""

import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from civictrack.core.exceptions import (
    FORBIDDEN_ROLE,
    ContentionError,
    InvalidValueError,
    TransitionDenied,
    WorkflowError,
)
from civictrack.models import db
from civictrack.services import assignment_router, cascade_engine, entity_store
from civictrack.services.entity_locks import get_lock_registry
from civictrack.services.transition_validator import (
    CREATION_ROLES,
    ENTITY_TYPES,
    can_create,
)

logger = logging.getLogger(__name__)

CREATABLE_TYPES = tuple(CREATION_ROLES)


def request_transition(entity_type: str, entity_id: str, transition: str, actor, payload: dict | None = None) -> dict:
    """
    Apply *transition* to one entity and run its cascades atomically.

    Args:
        entity_type: issue | tender | bid | work_progress
        entity_id: Id of the entity to move.
        transition: Transition name from the entity's table.
        actor: ``Actor(id, role)`` resolved by the access guard.
        payload: Transition-specific fields (contractor_id, notes, …).

    Returns:
        Result dict; see module docstring.
    """
    log_extra = {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "transition": transition,
        "actor_role": actor.role,
    }
    if entity_type not in ENTITY_TYPES:
        return _error(InvalidValueError(f"Unknown entity type: {entity_type}"))

    try:
        keys = entity_store.lock_scope(entity_type, entity_id)
        with get_lock_registry().hold(keys):
            entity = entity_store.load(entity_type, entity_id)
            result = entity_store.advance(entity_type, entity, transition, actor, payload)
            report = cascade_engine.run(result, actor)
            db.session.flush()
            response = {
                "status": "applied",
                "entity": entity.to_dict(),
                "noop": result.noop,
                "reason": result.reason,
                "cascade": [applied.to_dict() for applied in report.applied],
                "warnings": report.warnings,
            }
            db.session.commit()
    except TransitionDenied as exc:
        db.session.rollback()
        logger.info("Transition denied: %s", exc, extra=log_extra)
        return {"status": "denied", "reason": exc.kind, "message": str(exc)}
    except WorkflowError as exc:
        db.session.rollback()
        logger.info("Transition failed (%s): %s", exc.kind, exc, extra=log_extra)
        return _error(exc)
    except (StaleDataError, OperationalError) as exc:
        db.session.rollback()
        logger.warning("Concurrent update on %s %s: %s", entity_type, entity_id, exc, extra=log_extra)
        return _error(ContentionError(f"{entity_type} {entity_id} was modified concurrently; retry the request"))
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected failure in %s.%s", entity_type, transition, extra=log_extra)
        raise

    return response


def get_entity(entity_type: str, entity_id: str) -> dict:
    """Snapshot of one entity. Raises ``NotFoundError``."""
    return entity_store.load(entity_type, entity_id, for_update=False).to_dict()


def list_active_assignments(issue_id: str) -> list[dict]:
    """Active assignments of an issue in creation order. Raises ``NotFoundError``."""
    entity_store.load("issue", issue_id, for_update=False)
    return [a.to_dict() for a in assignment_router.active_assignments(issue_id)]


def create_entity(record_type: str, actor, data: dict | None = None, *, tender_id: str | None = None) -> dict:
    """
    Create a department, issue, tender, bid or progress record.

    Bids and progress records are created under the tender's lock so the
    tender stage they depend on cannot change underneath them.

    Returns:
        {"status": "created", "entity"} | {"status": "denied", …} | {"status": "error", …}
    """
    data = data or {}
    if record_type not in CREATABLE_TYPES:
        return _error(InvalidValueError(f"Unknown record type: {record_type}"))
    if not can_create(record_type, actor.role):
        return {
            "status": "denied",
            "reason": FORBIDDEN_ROLE,
            "message": f"Role '{actor.role}' may not create {record_type}",
        }

    keys = [("tender", tender_id)] if tender_id else []
    try:
        with get_lock_registry().hold(keys):
            if record_type == "department":
                entity = entity_store.create_department(actor, data)
            elif record_type == "issue":
                entity = entity_store.create_issue(actor, data)
            elif record_type == "tender":
                entity = entity_store.create_tender(actor, data)
            elif record_type == "bid":
                entity = entity_store.place_bid(actor, tender_id, data)
            else:
                entity = entity_store.create_progress_record(actor, tender_id, data)
            response = {"status": "created", "entity": entity.to_dict()}
            db.session.commit()
    except WorkflowError as exc:
        db.session.rollback()
        logger.info("Create %s failed (%s): %s", record_type, exc.kind, exc,
                    extra={"entity_type": record_type, "actor_role": actor.role})
        return _error(exc)
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error creating %s: %s", record_type, exc.orig)
        return _error(InvalidValueError(f"Constraint violation creating {record_type}"))
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected failure creating %s", record_type)
        raise

    return response


def _error(exc: WorkflowError) -> dict:
    body = {
        "status": "error",
        "kind": exc.kind,
        "message": str(exc),
        "retryable": exc.retryable,
    }
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body
