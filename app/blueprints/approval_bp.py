"""
Quotation Approval Blueprint.

Routes:
  GET    /approval-workflows                          – list workflows (?active=true)
  POST   /approval-workflows                          – create workflow
  GET    /approval-workflows/<wid>                    – workflow detail
  PUT    /approval-workflows/<wid>                    – partial update
  DELETE /approval-workflows/<wid>                    – delete (no pending approvals)
  POST   /approvals/request                           – submit a quotation for approval
  POST   /approvals/<aid>/steps/<sid>/process         – approve / reject one step
  GET    /approvals/<aid>                             – approval detail
  GET    /approvals/<aid>/history                     – audit trail, oldest first
  GET    /approvals/pending/my                        – approvals awaiting me
  GET    /approvals/dashboard                         – dashboard summary

Layer contract:
    - Blueprint: parse + validate input shape, resolve the acting user,
                 call service, return JSON response.
    - NO db.session calls here — all writes owned by the services.
    - Service exceptions are mapped by register_error_handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from app.middleware.jwt_auth import current_user_id
from app.services import approval_dashboard, approval_service, workflow_service
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import parse_bool_arg

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _unauthenticated():
    return api_error(E.UNAUTHENTICATED, "Authentication required")


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW CRUD
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/approval-workflows", methods=["GET"])
def list_workflows():
    """List workflows in evaluation order."""
    active_only = parse_bool_arg(request.args.get("active")) or False
    return jsonify(workflow_service.list_workflows(active_only=active_only))


@approval_bp.route("/approval-workflows", methods=["POST"])
def create_workflow():
    """Create an approval workflow.

    Body: { name, description?, conditions: [{field, operator, value}],
            approval_levels: [{level, name, approver_user_ids,
                               require_all_approvers?, auto_approval_timeout_hours?}],
            priority?, is_active? }
    """
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    user_id = current_user_id()
    if user_id is None:
        return _unauthenticated()
    return jsonify(workflow_service.create_workflow(data, created_by_user_id=user_id)), 201


@approval_bp.route("/approval-workflows/<int:wid>", methods=["GET"])
def get_workflow(wid):
    return jsonify(workflow_service.get_workflow(wid))


@approval_bp.route("/approval-workflows/<int:wid>", methods=["PUT"])
def update_workflow(wid):
    """Update name, description, conditions, levels, priority or is_active."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    user_id = current_user_id()
    if user_id is None:
        return _unauthenticated()
    return jsonify(workflow_service.update_workflow(wid, data, user_id=user_id))


@approval_bp.route("/approval-workflows/<int:wid>", methods=["DELETE"])
def delete_workflow(wid):
    user_id = current_user_id()
    if user_id is None:
        return _unauthenticated()
    workflow_service.delete_workflow(wid, user_id=user_id)
    return "", 204


# ═════════════════════════════════════════════════════════════════════════════
# APPROVALS
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/approvals/request", methods=["POST"])
def request_approval():
    """Submit a quotation for approval.

    Body: { quotation_id }
    """
    data = _json_body() or {}
    quotation_id = data.get("quotation_id")
    if not isinstance(quotation_id, int) or isinstance(quotation_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "quotation_id is required")
    user_id = current_user_id()
    if user_id is None:
        return _unauthenticated()
    return jsonify(approval_service.request_approval(quotation_id, user_id)), 201


@approval_bp.route("/approvals/<int:aid>/steps/<int:sid>/process", methods=["POST"])
def process_step(aid, sid):
    """Approve or reject one step.

    Body: { status: "APPROVED" | "REJECTED", comments? }
    """
    data = _json_body() or {}
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    user_id = current_user_id()
    if user_id is None:
        return _unauthenticated()
    result = approval_service.process_approval_step(
        aid, sid, status, data.get("comments"), user_id,
    )
    return jsonify(result)


@approval_bp.route("/approvals/<int:aid>", methods=["GET"])
def get_approval(aid):
    return jsonify(approval_service.get_approval_detail(aid))


@approval_bp.route("/approvals/<int:aid>/history", methods=["GET"])
def approval_history(aid):
    return jsonify(approval_service.get_approval_history(aid))


@approval_bp.route("/approvals/pending/my", methods=["GET"])
def my_pending():
    """Approvals with a step awaiting the acting user at the current level."""
    user_id = current_user_id()
    if user_id is None:
        return _unauthenticated()
    return jsonify(approval_dashboard.get_pending_approvals_for(user_id))


@approval_bp.route("/approvals/dashboard", methods=["GET"])
def dashboard():
    return jsonify(approval_dashboard.get_dashboard(user_id=current_user_id()))
