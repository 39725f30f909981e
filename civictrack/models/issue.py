"""
Issue domain models.

Models:
    - Issue:       citizen-reported civic issue routed through the
                   admin → area → department → contractor pipeline
    - Assignment:  history of who owned an issue at each routing step

Lifecycle (workflow_stage, ordered and monotonic):
    reported → area_review → department_assigned → contractor_assigned
             → in_progress → department_review → resolved

    department_review → in_progress is the only backward edge
    (return_to_contractor); the stage never falls behind in_progress.

Status follows the stage (ISSUE_STAGE_STATUS):
    reported                               → reported
    area_review, department_assigned       → acknowledged
    contractor_assigned .. department_review → in_progress
    resolved                               → resolved
"""

from sqlalchemy.orm import validates

from civictrack.models import db
from civictrack.models.base import _utcnow, _uuid, check_enum, enum_check, iso

__all__ = [
    "ISSUE_STATUSES",
    "ISSUE_WORKFLOW_STAGES",
    "ISSUE_STAGE_STATUS",
    "ISSUE_TRANSITIONS",
    "ASSIGNMENT_TYPES",
    "ASSIGNMENT_STATUSES",
    "STAGE_ASSIGNMENT_TYPE",
    "Issue",
    "Assignment",
]


# ── Constants ────────────────────────────────────────────────────────────────

ISSUE_STATUSES = ("reported", "acknowledged", "in_progress", "resolved")

ISSUE_WORKFLOW_STAGES = (
    "reported", "area_review", "department_assigned", "contractor_assigned",
    "in_progress", "department_review", "resolved",
)

ISSUE_STAGE_STATUS = {
    "reported": "reported",
    "area_review": "acknowledged",
    "department_assigned": "acknowledged",
    "contractor_assigned": "in_progress",
    "in_progress": "in_progress",
    "department_review": "in_progress",
    "resolved": "resolved",
}

ASSIGNMENT_TYPES = ("admin_to_area", "area_to_department", "department_to_contractor")

ASSIGNMENT_STATUSES = ("active", "completed", "cancelled")

# Stages whose entry materializes an Assignment row
STAGE_ASSIGNMENT_TYPE = {
    "area_review": "admin_to_area",
    "department_assigned": "area_to_department",
    "contractor_assigned": "department_to_contractor",
}


# ── Lifecycle Transition Table ───────────────────────────────────────────────
# award_contractor / verify_resolution are cascade-only (system role).
# award_contractor also runs from contractor_assigned to hand the issue to
# the winning bidder.

ISSUE_TRANSITIONS = {
    "send_to_area": {"from": ["reported"], "to": "area_review"},
    "assign_department": {"from": ["area_review"], "to": "department_assigned"},
    "assign_contractor": {"from": ["department_assigned"], "to": "contractor_assigned"},
    "start_work": {"from": ["contractor_assigned"], "to": "in_progress"},
    "submit_for_review": {"from": ["in_progress"], "to": "department_review"},
    "return_to_contractor": {"from": ["department_review"], "to": "in_progress"},
    "resolve": {"from": ["department_review"], "to": "resolved"},
    "award_contractor": {
        "from": ["reported", "area_review", "department_assigned", "contractor_assigned"],
        "to": "contractor_assigned",
    },
    "verify_resolution": {
        "from": [
            "reported", "area_review", "department_assigned", "contractor_assigned",
            "in_progress", "department_review",
        ],
        "to": "resolved",
    },
}


# ═════════════════════════════════════════════════════════════════════════════
# 1. Issue
# ═════════════════════════════════════════════════════════════════════════════


class Issue(db.Model):
    """
    A civic issue reported by a citizen.

    ``resolved_at`` / ``actual_resolution_date`` are written exactly once,
    on entering ``resolved``. ``version`` is the optimistic-concurrency
    counter maintained by the mapper.
    """

    __tablename__ = "issues"
    __table_args__ = (
        enum_check("status", ISSUE_STATUSES, "ck_issue_status"),
        enum_check("workflow_stage", ISSUE_WORKFLOW_STAGES, "ck_issue_workflow_stage"),
        db.Index("idx_issues_workflow_stage", "workflow_stage"),
        db.Index("idx_issues_assigned_department_id", "assigned_department_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(50), nullable=True)
    reported_by = db.Column(db.String(36), nullable=True, comment="Actor id of the reporter")

    status = db.Column(db.String(20), nullable=False, default="reported")
    workflow_stage = db.Column(db.String(30), nullable=False, default="reported")

    assigned_department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )
    current_assignee_id = db.Column(db.String(36), nullable=True, comment="Actor id")

    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_resolution_date = db.Column(db.Date, nullable=True)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    assignments = db.relationship(
        "Assignment", backref="issue", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Assignment.sequence",
    )

    @validates("status")
    def _validate_status(self, key, value):
        return check_enum("Issue", key, value, ISSUE_STATUSES)

    @validates("workflow_stage")
    def _validate_workflow_stage(self, key, value):
        return check_enum("Issue", key, value, ISSUE_WORKFLOW_STAGES)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "reported_by": self.reported_by,
            "status": self.status,
            "workflow_stage": self.workflow_stage,
            "assigned_department_id": self.assigned_department_id,
            "current_assignee_id": self.current_assignee_id,
            "resolved_at": iso(self.resolved_at),
            "actual_resolution_date": iso(self.actual_resolution_date),
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Issue {self.id}: {self.title[:40]} [{self.workflow_stage}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Assignment
# ═════════════════════════════════════════════════════════════════════════════


class Assignment(db.Model):
    """
    One routing hand-off of an issue.

    Rows are never deleted; at most one row per (issue, assignment_type)
    is ``active``. ``sequence`` orders rows of one issue by creation.
    """

    __tablename__ = "issue_assignments"
    __table_args__ = (
        enum_check("assignment_type", ASSIGNMENT_TYPES, "ck_assignment_type"),
        enum_check("status", ASSIGNMENT_STATUSES, "ck_assignment_status"),
        db.Index("idx_issue_assignments_issue_id", "issue_id"),
        db.Index("idx_issue_assignments_assigned_to", "assigned_to"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    issue_id = db.Column(
        db.String(36), db.ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = db.Column(db.Integer, nullable=False, default=1)

    assigned_by = db.Column(db.String(36), nullable=False)
    assigned_to = db.Column(db.String(36), nullable=True)
    assigned_department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )
    assignment_type = db.Column(db.String(30), nullable=False)
    assignment_notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @validates("assignment_type")
    def _validate_assignment_type(self, key, value):
        return check_enum("Assignment", key, value, ASSIGNMENT_TYPES)

    @validates("status")
    def _validate_status(self, key, value):
        return check_enum("Assignment", key, value, ASSIGNMENT_STATUSES)

    def to_dict(self):
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "sequence": self.sequence,
            "assigned_by": self.assigned_by,
            "assigned_to": self.assigned_to,
            "assigned_department_id": self.assigned_department_id,
            "assignment_type": self.assignment_type,
            "assignment_notes": self.assignment_notes,
            "status": self.status,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Assignment {self.id}: {self.assignment_type} [{self.status}]>"
