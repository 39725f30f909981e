"""
Tendering domain models.

Models:
    - Tender:              public works contract, optionally raised from an Issue
    - Bid:                 a contractor's offer on a tender
    - WorkProgressRecord:  contractor progress report, verified by the department

Architecture:
    Issue ──1:N──▶ Tender ──1:N──▶ Bid
                   Tender ──1:N──▶ WorkProgressRecord

Lifecycle states:
    Tender (workflow_stage, ordered):
        created → available → bidding_closed → under_review → awarded
        → work_in_progress → work_completed → verified → completed
    Bid:                 pending → accepted | rejected | withdrawn
    WorkProgressRecord:  draft → submitted → approved | rejected → draft

Award and verification are cascade-only transitions (system role):
accepting a bid awards the tender; approving a completion record
verifies it.
"""

from sqlalchemy.orm import validates

from civictrack.core.exceptions import InvalidValueError
from civictrack.models import db
from civictrack.models.base import _utcnow, _uuid, check_enum, enum_check, iso

__all__ = [
    "TENDER_STATUSES",
    "TENDER_WORKFLOW_STAGES",
    "TENDER_STAGE_STATUS",
    "TENDER_AWARDABLE_STAGES",
    "TENDER_TRANSITIONS",
    "BID_STATUSES",
    "BID_TRANSITIONS",
    "PROGRESS_TYPES",
    "PROGRESS_STATUSES",
    "PROGRESS_TRANSITIONS",
    "PROGRESS_PERCENTAGE_RANGE",
    "check_percentage",
    "Tender",
    "Bid",
    "WorkProgressRecord",
]


# ── Constants ────────────────────────────────────────────────────────────────

TENDER_STATUSES = ("draft", "open", "closed", "awarded", "completed")

TENDER_WORKFLOW_STAGES = (
    "created", "available", "bidding_closed", "under_review", "awarded",
    "work_in_progress", "work_completed", "verified", "completed",
)

TENDER_STAGE_STATUS = {
    "created": "draft",
    "available": "open",
    "bidding_closed": "closed",
    "under_review": "closed",
    "awarded": "awarded",
    "work_in_progress": "awarded",
    "work_completed": "awarded",
    "verified": "completed",
    "completed": "completed",
}

TENDER_AWARDABLE_STAGES = ("available", "bidding_closed", "under_review")

# Stages in which the awarded contractor may file progress records
TENDER_WORK_STAGES = ("awarded", "work_in_progress", "work_completed")

BID_STATUSES = ("pending", "accepted", "rejected", "withdrawn")

PROGRESS_TYPES = ("start", "update", "milestone", "completion")

PROGRESS_STATUSES = ("draft", "submitted", "approved", "rejected")

PROGRESS_PERCENTAGE_RANGE = (0, 100)


# ── Lifecycle Transition Tables ──────────────────────────────────────────────

TENDER_TRANSITIONS = {
    "publish": {"from": ["created"], "to": "available"},
    "close_bidding": {"from": ["available"], "to": "bidding_closed"},
    "start_review": {"from": ["bidding_closed"], "to": "under_review"},
    "award": {"from": list(TENDER_AWARDABLE_STAGES), "to": "awarded"},
    "start_work": {"from": ["awarded"], "to": "work_in_progress"},
    "mark_work_completed": {"from": ["work_in_progress"], "to": "work_completed"},
    "verify_completion": {"from": list(TENDER_WORK_STAGES), "to": "verified"},
    "close": {"from": ["verified"], "to": "completed"},
}

BID_TRANSITIONS = {
    "accept": {"from": ["pending"], "to": "accepted"},
    "reject": {"from": ["pending"], "to": "rejected"},
    "withdraw": {"from": ["pending"], "to": "withdrawn"},
}

PROGRESS_TRANSITIONS = {
    "submit": {"from": ["draft"], "to": "submitted"},
    "approve": {"from": ["submitted"], "to": "approved"},
    "reject": {"from": ["submitted"], "to": "rejected"},
    "revise": {"from": ["rejected"], "to": "draft"},
}


def check_percentage(value, field: str = "progress_percentage"):
    """Return *value* as int if it lies in [0, 100]; None passes through."""
    if value is None:
        return None
    low, high = PROGRESS_PERCENTAGE_RANGE
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidValueError(f"{field} must be a number", details={field: "not numeric"})
    if not low <= value <= high:
        raise InvalidValueError(
            f"{field} must be between {low} and {high} (got {value})",
            details={field: "out of range"},
        )
    return int(value)


# ═════════════════════════════════════════════════════════════════════════════
# 1. Tender
# ═════════════════════════════════════════════════════════════════════════════


class Tender(db.Model):
    """
    A contract put out to bid.

    ``source_issue_id`` is fixed at creation. The award fields
    (contractor, amount, awarded_at) are written together, exactly once.
    """

    __tablename__ = "tenders"
    __table_args__ = (
        enum_check("status", TENDER_STATUSES, "ck_tender_status"),
        enum_check("workflow_stage", TENDER_WORKFLOW_STAGES, "ck_tender_workflow_stage"),
        db.Index("idx_tenders_source_issue_id", "source_issue_id"),
        db.Index("idx_tenders_department_id", "department_id"),
        db.Index("idx_tenders_awarded_contractor_id", "awarded_contractor_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    source_issue_id = db.Column(
        db.String(36), db.ForeignKey("issues.id", ondelete="SET NULL"),
        nullable=True,
    )
    department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )
    estimated_amount = db.Column(db.Numeric(14, 2), nullable=True)
    created_by = db.Column(db.String(36), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="draft")
    workflow_stage = db.Column(db.String(30), nullable=False, default="created")

    # Award (set together)
    awarded_contractor_id = db.Column(db.String(36), nullable=True)
    awarded_amount = db.Column(db.Numeric(14, 2), nullable=True)
    awarded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    work_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_date = db.Column(db.Date, nullable=True)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    @validates("status")
    def _validate_status(self, key, value):
        return check_enum("Tender", key, value, TENDER_STATUSES)

    @validates("workflow_stage")
    def _validate_workflow_stage(self, key, value):
        return check_enum("Tender", key, value, TENDER_WORKFLOW_STAGES)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "source_issue_id": self.source_issue_id,
            "department_id": self.department_id,
            "estimated_amount": _amount(self.estimated_amount),
            "created_by": self.created_by,
            "status": self.status,
            "workflow_stage": self.workflow_stage,
            "awarded_contractor_id": self.awarded_contractor_id,
            "awarded_amount": _amount(self.awarded_amount),
            "awarded_at": iso(self.awarded_at),
            "work_started_at": iso(self.work_started_at),
            "completion_date": iso(self.completion_date),
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Tender {self.id}: {self.title[:40]} [{self.workflow_stage}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Bid
# ═════════════════════════════════════════════════════════════════════════════


class Bid(db.Model):
    """A contractor's offer. At most one bid per tender is ``accepted``."""

    __tablename__ = "bids"
    __table_args__ = (
        enum_check("status", BID_STATUSES, "ck_bid_status"),
        db.CheckConstraint("amount > 0", name="ck_bid_amount_positive"),
        db.Index("idx_bids_tender_id", "tender_id"),
        db.Index("idx_bids_user_id", "user_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    tender_id = db.Column(
        db.String(36), db.ForeignKey("tenders.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(db.String(36), nullable=False, comment="Bidder actor id")
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    proposal = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="pending")
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    @validates("status")
    def _validate_status(self, key, value):
        return check_enum("Bid", key, value, BID_STATUSES)

    @validates("amount")
    def _validate_amount(self, key, value):
        if value is None or isinstance(value, bool) or value <= 0:
            raise InvalidValueError("Bid.amount must be greater than 0", details={key: "not positive"})
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "user_id": self.user_id,
            "amount": _amount(self.amount),
            "proposal": self.proposal,
            "status": self.status,
            "decided_at": iso(self.decided_at),
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Bid {self.id}: tender={self.tender_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. WorkProgressRecord
# ═════════════════════════════════════════════════════════════════════════════


class WorkProgressRecord(db.Model):
    """
    Progress report filed by the awarded contractor.

    A record enters ``approved`` at most once. Approving a ``completion``
    record verifies the tender and resolves its source issue.
    """

    __tablename__ = "work_progress"
    __table_args__ = (
        enum_check("progress_type", PROGRESS_TYPES, "ck_work_progress_type"),
        enum_check("status", PROGRESS_STATUSES, "ck_work_progress_status"),
        db.CheckConstraint(
            "progress_percentage IS NULL OR "
            "(progress_percentage >= 0 AND progress_percentage <= 100)",
            name="ck_work_progress_percentage",
        ),
        db.Index("idx_work_progress_tender_id", "tender_id"),
        db.Index("idx_work_progress_contractor_id", "contractor_id"),
        db.Index("idx_work_progress_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    tender_id = db.Column(
        db.String(36), db.ForeignKey("tenders.id", ondelete="CASCADE"),
        nullable=False,
    )
    contractor_id = db.Column(db.String(36), nullable=False)
    progress_type = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    progress_percentage = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="submitted")

    # Verification
    verified_by = db.Column(db.String(36), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    @validates("progress_type")
    def _validate_progress_type(self, key, value):
        return check_enum("WorkProgressRecord", key, value, PROGRESS_TYPES)

    @validates("status")
    def _validate_status(self, key, value):
        return check_enum("WorkProgressRecord", key, value, PROGRESS_STATUSES)

    @validates("progress_percentage")
    def _validate_percentage(self, key, value):
        return check_percentage(value, key)

    def to_dict(self):
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "contractor_id": self.contractor_id,
            "progress_type": self.progress_type,
            "title": self.title,
            "description": self.description,
            "progress_percentage": self.progress_percentage,
            "status": self.status,
            "verified_by": self.verified_by,
            "verified_at": iso(self.verified_at),
            "verification_notes": self.verification_notes,
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkProgressRecord {self.id}: {self.progress_type} [{self.status}]>"


def _amount(value):
    return float(value) if value is not None else None
