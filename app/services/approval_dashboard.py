"""
Approval Dashboard Service — read-only aggregation over approvals.

Aggregates:
  - Pending approvals (global and for one approver)
  - Approved / rejected since the start of the current UTC day
  - Average request-to-completion time in hours
  - Ten most recently completed approvals
  - Per-workflow pending counts for active workflows
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.models import db
from app.models.approval import ApprovalStep, ApprovalWorkflow, QuotationApproval

logger = logging.getLogger(__name__)

RECENT_APPROVALS_LIMIT = 10


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _today_start(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _current_level_steps_for(user_id: int):
    """Approvals with a PENDING step for *user_id* at their current level."""
    return (
        select(QuotationApproval.id)
        .join(ApprovalStep, ApprovalStep.approval_id == QuotationApproval.id)
        .where(
            QuotationApproval.status == "PENDING",
            ApprovalStep.approver_user_id == user_id,
            ApprovalStep.status == "PENDING",
            ApprovalStep.level == QuotationApproval.current_level,
        )
        .distinct()
    )


def get_pending_approvals_for(user_id: int) -> list[dict]:
    """Pending approvals awaiting *user_id*'s decision, oldest request first."""
    rows = db.session.execute(
        select(QuotationApproval)
        .where(QuotationApproval.id.in_(_current_level_steps_for(user_id)))
        .order_by(QuotationApproval.requested_at.asc(), QuotationApproval.id.asc())
    ).scalars()
    return [a.to_dict() for a in rows]


def average_approval_hours() -> float:
    """Mean requested→completed duration over all terminal approvals, in hours."""
    rows = db.session.execute(
        select(QuotationApproval.requested_at, QuotationApproval.completed_at).where(
            QuotationApproval.status.in_(("APPROVED", "REJECTED")),
            QuotationApproval.completed_at.isnot(None),
        )
    ).all()
    if not rows:
        return 0.0
    total = sum(
        (_aware(done) - _aware(requested)).total_seconds() for requested, done in rows
    )
    return round(total / len(rows) / 3600, 2)


def get_dashboard(user_id: int | None = None, now: datetime | None = None) -> dict:
    """Dashboard summary; my_pending_approvals is 0 when no user is given."""
    today = _today_start(now)

    pending = db.session.execute(
        select(func.count(QuotationApproval.id)).where(QuotationApproval.status == "PENDING")
    ).scalar_one()

    my_pending = 0
    if user_id is not None:
        my_pending = db.session.execute(
            select(func.count()).select_from(_current_level_steps_for(user_id).subquery())
        ).scalar_one()

    completed_today = dict(
        db.session.execute(
            select(QuotationApproval.status, func.count(QuotationApproval.id))
            .where(
                QuotationApproval.status.in_(("APPROVED", "REJECTED")),
                QuotationApproval.completed_at >= today,
            )
            .group_by(QuotationApproval.status)
        ).all()
    )

    recent = db.session.execute(
        select(QuotationApproval)
        .where(QuotationApproval.status.in_(("APPROVED", "REJECTED")))
        .order_by(QuotationApproval.completed_at.desc(), QuotationApproval.id.desc())
        .limit(RECENT_APPROVALS_LIMIT)
    ).scalars()

    stats = db.session.execute(
        select(
            ApprovalWorkflow.id,
            ApprovalWorkflow.name,
            func.count(QuotationApproval.id),
        )
        .outerjoin(
            QuotationApproval,
            (QuotationApproval.workflow_id == ApprovalWorkflow.id)
            & (QuotationApproval.status == "PENDING"),
        )
        .where(ApprovalWorkflow.is_active.is_(True))
        .group_by(ApprovalWorkflow.id, ApprovalWorkflow.name, ApprovalWorkflow.priority)
        .order_by(ApprovalWorkflow.priority.desc(), ApprovalWorkflow.id.asc())
    ).all()

    return {
        "pending_approvals": pending,
        "my_pending_approvals": my_pending,
        "approved_today": completed_today.get("APPROVED", 0),
        "rejected_today": completed_today.get("REJECTED", 0),
        "average_approval_time": average_approval_hours(),
        "recent_approvals": [a.to_dict() for a in recent],
        "workflow_stats": [
            {
                "workflow_id": wf_id,
                "workflow_name": name,
                "pending_count": count,
                "average_time": 0,
            }
            for wf_id, name, count in stats
        ],
    }
