"""
Cascade Engine: derived transitions inside the triggering unit of work.

Two primary transitions propagate to other entities:

    Bid → accepted
        tender   award (contractor, amount, awarded_at)
        bids     every other pending bid on the tender → rejected
        issue    award_contractor (stage contractor_assigned, assignee = bidder)

    WorkProgressRecord (completion) → approved
        tender   verify_completion (completion_date = today)
        issue    verify_resolution (resolved_at, actual_resolution_date)

Every derived move goes through the entity store with the ``system`` role,
so it is validated, audited and routed like any other transition.

Failure semantics:
  - Tender-side denials raise; the whole call rolls back.
  - A missing tender or issue is ``cascade_target_missing``: logged at
    WARNING, returned as a warning, never raised.
  - An issue already resolved is skipped silently.
  - An issue already past the target stage is left alone (never regressed)
    and reported as a ``cascade_skipped`` warning.
"""

import logging
from dataclasses import dataclass, field

from civictrack.core.exceptions import CascadeTargetMissing, TransitionDenied
from civictrack.models.tender import Bid
from civictrack.services import entity_store

logger = logging.getLogger(__name__)

CASCADE_SKIPPED = "cascade_skipped"


@dataclass
class CascadeReport:
    """Derived transitions applied, plus warnings for skipped targets."""

    applied: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "applied": [result.to_dict() for result in self.applied],
            "warnings": list(self.warnings),
        }


def run(result, actor) -> CascadeReport:
    """
    Run the cascades triggered by a primary ``TransitionResult``.

    No-op results never cascade, so a replayed accept or approve cannot
    award or verify twice.
    """
    report = CascadeReport()
    if result.noop:
        return report

    if result.entity_type == "bid" and result.new_state == "accepted":
        _on_bid_accepted(result.entity, actor.as_system(), report)
    elif (
        result.entity_type == "work_progress"
        and result.new_state == "approved"
        and result.entity.progress_type == "completion"
    ):
        _on_completion_approved(result.entity, actor.as_system(), report)
    return report


# ── Bid accepted ─────────────────────────────────────────────────────────────

def _on_bid_accepted(bid, system, report: CascadeReport) -> None:
    tender = entity_store.find("tender", bid.tender_id)
    if tender is None:
        _missing(CascadeTargetMissing("tender", bid.tender_id), report)
        return

    report.applied.append(entity_store.advance(
        "tender", tender, "award", system,
        {"contractor_id": bid.user_id, "amount": bid.amount},
    ))

    siblings = (
        Bid.query
        .filter(Bid.tender_id == tender.id, Bid.status == "pending", Bid.id != bid.id)
        .order_by(Bid.created_at, Bid.id)
        .all()
    )
    for sibling in siblings:
        report.applied.append(entity_store.advance("bid", sibling, "reject", system))
    if siblings:
        logger.info(
            "Auto-rejected %d sibling bid(s) on tender %s", len(siblings), tender.id,
            extra={"entity_type": "tender", "entity_id": tender.id},
        )

    _advance_issue(
        tender.source_issue_id, "award_contractor", system,
        {"contractor_id": bid.user_id}, report,
    )


# ── Completion approved ──────────────────────────────────────────────────────

def _on_completion_approved(record, system, report: CascadeReport) -> None:
    tender = entity_store.find("tender", record.tender_id)
    if tender is None:
        _missing(CascadeTargetMissing("tender", record.tender_id), report)
        return

    report.applied.append(entity_store.advance("tender", tender, "verify_completion", system))
    _advance_issue(tender.source_issue_id, "verify_resolution", system, {}, report)


# ── Issue side ───────────────────────────────────────────────────────────────

def _advance_issue(issue_id, transition: str, system, payload: dict, report: CascadeReport) -> None:
    if not issue_id:
        return
    issue = entity_store.find("issue", issue_id)
    if issue is None:
        _missing(CascadeTargetMissing("issue", issue_id), report)
        return
    if issue.workflow_stage == "resolved":
        return

    try:
        report.applied.append(entity_store.advance("issue", issue, transition, system, payload))
    except TransitionDenied as exc:
        # The issue has moved past the target stage by hand; never regress it.
        logger.warning(
            "Cascade %s skipped for issue %s at stage %s",
            transition, issue.id, issue.workflow_stage,
            extra={"entity_type": "issue", "entity_id": issue.id, "transition": transition},
        )
        report.warnings.append({
            "kind": CASCADE_SKIPPED,
            "entity_type": "issue",
            "entity_id": issue.id,
            "transition": transition,
            "reason": exc.kind,
            "current_state": issue.workflow_stage,
        })


def _missing(error: CascadeTargetMissing, report: CascadeReport) -> None:
    logger.warning(
        "%s", error,
        extra={"entity_type": error.entity_type, "entity_id": error.entity_id},
    )
    report.warnings.append(error.to_warning())
