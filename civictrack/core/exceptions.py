"""
Workflow exception hierarchy.

Every service in the engine raises one of these types, and every type
carries a machine-readable ``kind`` drawn from a closed taxonomy:

    illegal_transition      state/transition pair not in the table
    forbidden_role          actor role not permitted for the transition
    invalid_value           field outside its domain (enum, range, missing)
    not_found               entity id unknown
    contention              lock / version conflict; the only retryable kind
    cascade_target_missing  cascade target absent (logged, never raised
                            to the caller of the primary transition)

The workflow facade turns these into result dicts and the blueprint turns
the result dicts into HTTP responses, so callers never need to import
service modules to handle errors.

Usage:
    from civictrack.core.exceptions import NotFoundError, TransitionDenied

    raise NotFoundError(resource="Tender", resource_id="t-1")
    raise TransitionDenied(ILLEGAL_TRANSITION, "bid", "accept", "rejected")
"""

ILLEGAL_TRANSITION = "illegal_transition"
FORBIDDEN_ROLE = "forbidden_role"
INVALID_VALUE = "invalid_value"
NOT_FOUND = "not_found"
CONTENTION = "contention"
CASCADE_TARGET_MISSING = "cascade_target_missing"


class WorkflowError(Exception):
    """Base class for every error the engine surfaces."""

    kind = "error"
    retryable = False


class NotFoundError(WorkflowError):
    """Raised when a requested entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Issue", "Bid").
        resource_id: The id that was looked up.
    """

    kind = NOT_FOUND

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidValueError(WorkflowError):
    """Raised when a field value falls outside its domain.

    Covers closed-enum violations at the store boundary, out-of-range
    numbers, missing required payload fields and broken creation
    preconditions.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    kind = INVALID_VALUE

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class TransitionDenied(WorkflowError):
    """Raised when the validator (or a cross-entity guard) denies a request.

    ``kind`` is the denial reason: illegal_transition, forbidden_role or
    invalid_value.
    """

    def __init__(
        self,
        reason: str,
        entity_type: str,
        transition: str,
        current_state: str | None = None,
        message: str | None = None,
    ) -> None:
        self.kind = reason
        self.entity_type = entity_type
        self.transition = transition
        self.current_state = current_state
        msg = f"Cannot '{transition}' {entity_type} (state={current_state})"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class ContentionError(WorkflowError):
    """Raised when an entity lock or row version could not be secured in time.

    Callers are expected to retry.
    """

    kind = CONTENTION
    retryable = True

    def __init__(self, message: str, keys: list | None = None) -> None:
        self.keys = keys or []
        super().__init__(message)


class CascadeTargetMissing(WorkflowError):
    """A tender or issue referenced by a cascade does not exist.

    Never propagated to the caller of the primary transition; the cascade
    engine logs it and reports it as a warning.
    """

    kind = CASCADE_TARGET_MISSING

    def __init__(self, entity_type: str, entity_id: str | None) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Cascade target {entity_type} id={entity_id} is missing")

    def to_warning(self) -> dict:
        return {
            "kind": self.kind,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
        }
