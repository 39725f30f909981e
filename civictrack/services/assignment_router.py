"""
Assignment Router: Assignment history for issue routing.

Entering a routing stage materializes one ``active`` Assignment:

    area_review          → admin_to_area
    department_assigned  → area_to_department
    contractor_assigned  → department_to_contractor

The prior ``active`` row of the same type for that issue is marked
``completed``. Only Assignment rows are written here; the issue itself
is updated by the entity store.
"""

import logging

from sqlalchemy import func

from civictrack.core.clock import get_clock, new_id
from civictrack.models import db
from civictrack.models.issue import STAGE_ASSIGNMENT_TYPE, Assignment, Issue

logger = logging.getLogger(__name__)


def record_stage_entry(issue: Issue, actor, *, notes: str | None = None) -> Assignment | None:
    """
    Record the hand-off implied by *issue* having just entered its current stage.

    Args:
        issue: The issue, already moved to its new ``workflow_stage``.
        actor: Actor whose transition caused the move (``assigned_by``).
        notes: Optional free-text ``assignment_notes``.

    Returns:
        The new Assignment, or None when the stage is not a routing stage.
    """
    assignment_type = STAGE_ASSIGNMENT_TYPE.get(issue.workflow_stage)
    if assignment_type is None:
        return None

    now = get_clock().now()
    superseded = (
        Assignment.query
        .filter_by(issue_id=issue.id, assignment_type=assignment_type, status="active")
        .all()
    )
    for prior in superseded:
        prior.status = "completed"
        prior.updated_at = now

    last_sequence = (
        db.session.query(func.max(Assignment.sequence))
        .filter(Assignment.issue_id == issue.id)
        .scalar()
    ) or 0

    assignment = Assignment(
        id=new_id(),
        issue_id=issue.id,
        sequence=last_sequence + 1,
        assigned_by=actor.id,
        assigned_to=issue.current_assignee_id,
        assigned_department_id=issue.assigned_department_id,
        assignment_type=assignment_type,
        assignment_notes=notes,
        status="active",
        created_at=now,
        updated_at=now,
    )
    db.session.add(assignment)
    db.session.flush()

    logger.info(
        "Issue %s routed: %s → %s (superseded %d)",
        issue.id, assignment_type, assignment.assigned_to, len(superseded),
        extra={"entity_type": "issue", "entity_id": issue.id},
    )
    return assignment


def active_assignments(issue_id: str) -> list[Assignment]:
    """Active assignments of one issue, in creation order."""
    return (
        Assignment.query
        .filter_by(issue_id=issue_id, status="active")
        .order_by(Assignment.sequence)
        .all()
    )
