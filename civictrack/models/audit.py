"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for workflow events.

One row is written for every applied transition, primary or cascaded,
and for every entity creation.
"""

import json

from civictrack.core.clock import get_clock
from civictrack.models import db
from civictrack.models.base import iso


class AuditLog(db.Model):
    """
    Immutable audit trail for every workflow event.

    ``action`` is ``<entity_type>.<transition>`` (or ``<entity_type>.create``).
    ``diff_json`` carries the {field: {old, new}} snapshot of the write.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="issue | tender | bid | work_progress | department",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="bid.accept | tender.award | issue.verify_resolution | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_role = db.Column(db.String(30), nullable=False, default="system")
    is_cascade = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="True when written by the cascade engine",
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_role": self.actor_role,
            "is_cascade": self.is_cascade,
            "diff": self.diff,
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    actor_role: str = "system",
    cascade: bool = False,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_role=actor_role,
        is_cascade=cascade,
        diff_json=json.dumps(diff or {}, default=str),
        timestamp=get_clock().now(),
    )
    db.session.add(log)
    db.session.flush()
    return log
