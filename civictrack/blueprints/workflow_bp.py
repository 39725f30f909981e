"""
Workflow Blueprint: JSON API over the workflow facade.

Endpoints:
  Creation:     POST /departments, POST /issues, POST /tenders
                POST /tenders/<id>/bids, POST /tenders/<id>/progress
  Entities:     GET  /<collection>/<id>
                POST /<collection>/<id>/transitions   {"transition", "payload"}
  Discovery:    GET  /transitions/<collection>?state=&role=
  Routing:      GET  /issues/<id>/assignments

Collections: issues, tenders, bids, progress.

Status mapping:
  applied → 200, created → 201
  denied  illegal_transition 409 · forbidden_role 403 · invalid_value 422
  error   not_found 404 · contention 409 (retryable) · invalid_value 422
"""

from flask import Blueprint, jsonify, request

from civictrack.core.exceptions import NotFoundError
from civictrack.middleware.actor_context import require_actor
from civictrack.services import workflow_service
from civictrack.services.transition_validator import COLLABORATOR_ROLES, available_transitions
from civictrack.utils.errors import E, api_error, workflow_error

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")

COLLECTIONS = {
    "issues": "issue",
    "tenders": "tender",
    "bids": "bid",
    "progress": "work_progress",
}


def _entity_type_or_404(collection):
    entity_type = COLLECTIONS.get(collection)
    if entity_type is None:
        return None, api_error(E.NOT_FOUND, f"Unknown collection: {collection}")
    return entity_type, None


def _created(result):
    if result["status"] != "created":
        return workflow_error(result)
    return jsonify(result["entity"]), 201


def _create(record_type, tender_id=None):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    return _created(workflow_service.create_entity(record_type, actor, data, tender_id=tender_id))


# ═════════════════════════════════════════════════════════════════════════════
# Creation (5 routes)
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/departments", methods=["POST"])
def create_department():
    return _create("department")


@workflow_bp.route("/issues", methods=["POST"])
def create_issue():
    """Report a new issue; the reporter is the calling actor."""
    return _create("issue")


@workflow_bp.route("/tenders", methods=["POST"])
def create_tender():
    return _create("tender")


@workflow_bp.route("/tenders/<tender_id>/bids", methods=["POST"])
def place_bid(tender_id):
    """Place a bid on an available tender; the bidder is the calling actor."""
    return _create("bid", tender_id=tender_id)


@workflow_bp.route("/tenders/<tender_id>/progress", methods=["POST"])
def create_progress_record(tender_id):
    return _create("work_progress", tender_id=tender_id)


# ═════════════════════════════════════════════════════════════════════════════
# Entities + lifecycle (2 routes)
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/<collection>/<entity_id>", methods=["GET"])
def get_entity(collection, entity_id):
    entity_type, err = _entity_type_or_404(collection)
    if err:
        return err
    try:
        return jsonify(workflow_service.get_entity(entity_type, entity_id))
    except NotFoundError as exc:
        return api_error(E.NOT_FOUND, str(exc))


@workflow_bp.route("/<collection>/<entity_id>/transitions", methods=["POST"])
def request_transition(collection, entity_id):
    """
    Apply a lifecycle transition.

    Body: {"transition": "accept", "payload": {...}}
    Returns the workflow result (entity snapshot, cascade, warnings).
    """
    entity_type, err = _entity_type_or_404(collection)
    if err:
        return err
    actor, err = require_actor()
    if err:
        return err

    data = request.get_json(silent=True) or {}
    transition = data.get("transition")
    if not transition:
        return api_error(E.VALIDATION_REQUIRED, "transition is required")
    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        return api_error(E.VALIDATION_REQUIRED, "payload must be an object")

    result = workflow_service.request_transition(entity_type, entity_id, transition, actor, payload)
    if result["status"] != "applied":
        return workflow_error(result)
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# Discovery + routing (2 routes)
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/transitions/<collection>", methods=["GET"])
def list_available_transitions(collection):
    """Transitions legal from ?state=, optionally narrowed to ?role=."""
    entity_type, err = _entity_type_or_404(collection)
    if err:
        return err
    state = request.args.get("state")
    if not state:
        return api_error(E.VALIDATION_REQUIRED, "state query parameter is required")
    role = request.args.get("role")
    if role is not None and role not in COLLABORATOR_ROLES:
        return api_error(E.VALIDATION_INVALID, f"Unknown role: {role}")
    items = available_transitions(entity_type, state, role)
    return jsonify({"entity_type": entity_type, "state": state, "items": items, "total": len(items)})


@workflow_bp.route("/issues/<issue_id>/assignments", methods=["GET"])
def list_active_assignments(issue_id):
    try:
        items = workflow_service.list_active_assignments(issue_id)
    except NotFoundError as exc:
        return api_error(E.NOT_FOUND, str(exc))
    return jsonify({"items": items, "total": len(items)})
