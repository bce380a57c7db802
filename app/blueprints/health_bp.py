"""
Health probes.

    GET /api/v1/health/live   — process is up (no I/O)
    GET /api/v1/health/ready  — database reachable and approval routing configured

Readiness is "degraded" (503) when the database query fails. Having no
active approval workflow is reported but does not fail the probe, since
approval requests then fail individually with NO_MATCHING_WORKFLOW.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.approval import ApprovalWorkflow

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/live", methods=["GET"])
def live():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    checks = {}
    try:
        t0 = time.perf_counter()
        active = db.session.execute(
            select(func.count(ApprovalWorkflow.id)).where(ApprovalWorkflow.is_active.is_(True))
        ).scalar_one()
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
        }
        checks["approval_workflows"] = {
            "status": "ok" if active else "warning",
            "active": active,
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Readiness check: database failed: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        return jsonify({"status": "degraded", "checks": checks}), 503

    checks["app"] = {"testing": current_app.testing, "debug": current_app.debug}
    return jsonify({"status": "ok", "checks": checks}), 200
