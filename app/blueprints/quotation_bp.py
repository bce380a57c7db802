"""
Quotation Blueprint.

Routes:
  GET    /quotations                    – list (?status, ?customer_id, ?number, ?limit, ?offset)
  POST   /quotations                    – create DRAFT quotation
  GET    /quotations/<qid>              – detail with items
  PUT    /quotations/<qid>              – update (status transitions are checked)
  DELETE /quotations/<qid>              – delete a DRAFT quotation
  POST   /quotations/<qid>/duplicate    – copy under a new number
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import pagination_args
from app.middleware.jwt_auth import current_user_id
from app.services import quotation_service
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

quotation_bp = Blueprint("quotation", __name__, url_prefix="/api/v1/quotations")
register_error_handlers(quotation_bp)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


@quotation_bp.route("", methods=["GET"])
def list_quotations():
    limit, offset = pagination_args()
    return jsonify(quotation_service.list_quotations(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        number=request.args.get("number"),
        limit=limit,
        offset=offset,
    ))


@quotation_bp.route("", methods=["POST"])
def create_quotation():
    """Create a quotation.

    Body: { customer_id, items: [{product_id, quantity, unit_price?, discount_amount?}],
            valid_until?, notes?, terms_conditions? }
    """
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not data.get("customer_id"):
        return api_error(E.VALIDATION_REQUIRED, "customer_id is required")
    result = quotation_service.create_quotation(data, created_by_user_id=current_user_id())
    return jsonify(result), 201


@quotation_bp.route("/<int:qid>", methods=["GET"])
def get_quotation(qid):
    return jsonify(quotation_service.get_quotation(qid))


@quotation_bp.route("/<int:qid>", methods=["PUT"])
def update_quotation(qid):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return jsonify(quotation_service.update_quotation(qid, data, user_id=current_user_id()))


@quotation_bp.route("/<int:qid>", methods=["DELETE"])
def delete_quotation(qid):
    quotation_service.delete_quotation(qid, user_id=current_user_id())
    return "", 204


@quotation_bp.route("/<int:qid>/duplicate", methods=["POST"])
def duplicate_quotation(qid):
    """Body (optional): { customer_id?, notes?, reset_status? }"""
    data = _json_body() or {}
    result = quotation_service.duplicate_quotation(qid, data, user_id=current_user_id())
    return jsonify(result), 201
