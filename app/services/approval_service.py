"""
Quotation Approval Service — the approval state machine.

States:
    PENDING (current_level 1..n) → APPROVED | REJECTED   (terminal, immutable)

Operations:
    request_approval       match a workflow and open an approval at level 1
    process_approval_step  record one approver's decision, then advance
    advance_approval       level-advancement procedure, safe to re-invoke

Transactions:
    - request_approval: approval row + level-1 steps + audit in one commit.
    - process_approval_step: the step decision is one commit; advancement is
      a second, independent commit.
    - advance_approval: (advance level + new steps) or (finalize + quotation
      force-approve) are each a single commit.

Concurrency:
    No row locks are taken. Every approval write is a compare-and-set UPDATE
    guarded on (status='PENDING', current_level=<level read>). Zero affected
    rows means another caller already advanced or finalized the approval;
    the transaction is rolled back and the call is a no-op. A step decision
    is likewise guarded on the step still being PENDING.
    The partial unique index uq_quotation_approvals_one_pending backs the
    at-most-one-pending check in request_approval.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.models import db
from app.models.approval import STEP_DECISIONS, ApprovalStep, QuotationApproval
from app.models.audit import AuditLog, write_audit
from app.models.quotation import APPROVABLE_STATUSES, Quotation
from app.services import quotation_service
from app.services.approval_rules import ApprovalLevel, find_level, load_levels
from app.services.workflow_service import find_matching_workflow

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_approval(approval_id: int) -> QuotationApproval:
    approval = db.session.get(QuotationApproval, approval_id)
    if approval is None:
        raise NotFoundError("QuotationApproval", approval_id)
    return approval


def _new_steps(approval_id: int, level: ApprovalLevel) -> list[ApprovalStep]:
    """One PENDING step per approver listed on *level* (no de-duplication across levels)."""
    return [
        ApprovalStep(approval_id=approval_id, level=level.level, approver_user_id=uid, status="PENDING")
        for uid in level.approver_user_ids
    ]


def _level_complete(level: ApprovalLevel, steps: list[ApprovalStep]) -> bool:
    if level.require_all_approvers:
        return bool(steps) and all(s.status == "APPROVED" for s in steps)
    return any(s.status == "APPROVED" for s in steps)


def _compare_and_set(approval_id: int, expected_level: int, **values) -> bool:
    """Guarded approval write; False when the approval moved underneath us."""
    result = db.session.execute(
        update(QuotationApproval)
        .where(
            QuotationApproval.id == approval_id,
            QuotationApproval.status == "PENDING",
            QuotationApproval.current_level == expected_level,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ═════════════════════════════════════════════════════════════════════════════
# Request
# ═════════════════════════════════════════════════════════════════════════════


def request_approval(quotation_id: int, requester_id: int | None) -> dict:
    """Open an approval for a DRAFT or SENT quotation.

    Args:
        quotation_id: Quotation to submit.
        requester_id: Acting user.

    Returns:
        Approval detail dict (see QuotationApproval.to_dict).

    Raises:
        NotFoundError: quotation does not exist.
        ValidationError: quotation not approvable, approval already pending,
            or no active workflow matches.
    """
    quotation = db.session.get(Quotation, quotation_id)
    if quotation is None:
        raise NotFoundError("Quotation", quotation_id)

    if quotation.status not in APPROVABLE_STATUSES:
        raise ValidationError(
            f"Cannot request approval for a quotation in status {quotation.status}",
            details={"status": quotation.status},
            code="QUOTATION_NOT_APPROVABLE",
        )

    pending = db.session.execute(
        select(QuotationApproval.id).where(
            QuotationApproval.quotation_id == quotation.id,
            QuotationApproval.status == "PENDING",
        )
    ).scalar_one_or_none()
    if pending is not None:
        raise ValidationError(
            "Quotation already has a pending approval request",
            details={"approval_id": pending},
            code="APPROVAL_ALREADY_PENDING",
        )

    workflow = find_matching_workflow(quotation)
    if workflow is None:
        raise ValidationError(
            "No approval workflow matches this quotation",
            details={"quotation_id": quotation.id},
            code="NO_MATCHING_WORKFLOW",
        )
    first = find_level(load_levels(workflow), 1)
    if first is None:
        raise ValidationError(
            f"Workflow '{workflow.name}' has no level 1",
            details={"workflow_id": workflow.id},
        )

    try:
        approval = QuotationApproval(
            quotation_id=quotation.id,
            workflow_id=workflow.id,
            current_level=1,
            status="PENDING",
            requested_by_user_id=requester_id,
            requested_at=_utcnow(),
        )
        db.session.add(approval)
        db.session.flush()
        db.session.add_all(_new_steps(approval.id, first))
        write_audit(
            entity_type="approval", entity_id=approval.id, action="approval.request",
            actor_user_id=requester_id,
            diff={"quotation_id": quotation.id, "workflow_id": workflow.id,
                  "approvers": list(first.approver_user_ids)},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        # Lost the race against a concurrent request for the same quotation
        raise ValidationError(
            "Quotation already has a pending approval request",
            details={"quotation_id": quotation_id},
            code="APPROVAL_ALREADY_PENDING",
        )
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Approval requested via workflow %s", workflow.name,
        extra={"approval_id": approval.id, "quotation_id": quotation_id,
               "workflow_id": workflow.id, "user_id": requester_id},
    )
    return approval.to_dict()


def get_approval_detail(approval_id: int) -> dict:
    return _get_approval(approval_id).to_dict()


def get_approval_history(approval_id: int) -> list[dict]:
    """Audit rows for an approval, its steps and the forced quotation approval, oldest first."""
    approval = _get_approval(approval_id)
    step_ids = [str(s.id) for s in approval.steps]
    rows = db.session.execute(
        select(AuditLog)
        .where(or_(
            (AuditLog.entity_type == "approval") & (AuditLog.entity_id == str(approval.id)),
            (AuditLog.entity_type == "approval_step") & AuditLog.entity_id.in_(step_ids),
            (AuditLog.action == "quotation.force_approve")
            & (AuditLog.entity_id == str(approval.quotation_id)),
        ))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    ).scalars()
    # force_approve rows are per quotation; keep only the one this approval caused
    return [
        row.to_dict() for row in rows
        if row.action != "quotation.force_approve" or row.diff.get("approval_id") == approval.id
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Step decisions
# ═════════════════════════════════════════════════════════════════════════════


def process_approval_step(
    approval_id: int,
    step_id: int,
    status: str,
    comments: str | None,
    approver_id: int | None,
) -> dict:
    """Record *approver_id*'s decision on one step, then run advancement.

    Args:
        approval_id: Parent approval the caller believes the step belongs to.
        step_id: Step being decided.
        status: "APPROVED" or "REJECTED".
        comments: Optional free text.
        approver_id: Acting user; must be the step's designated approver.

    Returns:
        Refreshed approval detail dict.

    Raises:
        NotFoundError: step (or approval) does not exist.
        ValidationError: bad decision, step/approval mismatch, step already
            processed, approval no longer pending, or step on a closed level.
        AuthorizationError: acting user is not the designated approver.
    """
    if not isinstance(status, str) or status not in STEP_DECISIONS:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(STEP_DECISIONS))}",
            details={"status": status},
        )

    step = db.session.get(ApprovalStep, step_id)
    if step is None:
        raise NotFoundError("ApprovalStep", step_id)
    if step.approval_id != approval_id:
        raise ValidationError(
            "Step does not belong to this approval",
            details={"step_id": step_id, "approval_id": approval_id},
            code="STEP_APPROVAL_MISMATCH",
        )
    if approver_id is None or step.approver_user_id != approver_id:
        raise AuthorizationError(
            "You are not authorized to decide on this approval step",
            user_id=approver_id,
        )

    approval = step.approval
    if step.status != "PENDING":
        raise ValidationError(
            "This approval step has already been processed",
            details={"step_status": step.status},
            code="STEP_ALREADY_PROCESSED",
        )
    if approval.status != "PENDING":
        raise ValidationError(
            "This approval request is no longer pending",
            details={"approval_status": approval.status},
            code="APPROVAL_NOT_PENDING",
        )
    if step.level != approval.current_level:
        raise ValidationError(
            "This step belongs to an approval level that is already complete",
            details={"step_level": step.level, "current_level": approval.current_level},
            code="LEVEL_CLOSED",
        )

    now = _utcnow()
    result = db.session.execute(
        update(ApprovalStep)
        .where(ApprovalStep.id == step.id, ApprovalStep.status == "PENDING")
        .values(
            status=status,
            comments=comments,
            decided_at=now,
            approved_at=now if status == "APPROVED" else None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ValidationError(
            "This approval step has already been processed",
            code="STEP_ALREADY_PROCESSED",
        )
    write_audit(
        entity_type="approval_step", entity_id=step.id, action="approval.step_decide",
        actor_user_id=approver_id,
        diff={"approval_id": approval_id, "level": step.level, "status": status},
    )
    db.session.commit()

    logger.info(
        "Approval step %s decided %s at level %d", step_id, status, step.level,
        extra={"approval_id": approval_id, "user_id": approver_id},
    )

    advance_approval(approval_id, actor_user_id=approver_id)
    return _get_approval(approval_id).to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Level advancement
# ═════════════════════════════════════════════════════════════════════════════


def advance_approval(
    approval_id: int,
    *,
    expected_level: int | None = None,
    actor_user_id: int | None = None,
) -> str:
    """Evaluate the current level and advance or finalize the approval.

    Safe to call any number of times: a terminal approval, an incomplete
    level, or an approval that another caller already moved past
    *expected_level* leaves everything unchanged.

    Returns:
        One of "noop", "waiting", "advanced", "approved", "rejected", "stale".
    """
    approval = _get_approval(approval_id)
    db.session.refresh(approval)
    if approval.status != "PENDING":
        return "noop"
    level_no = approval.current_level
    if expected_level is not None and expected_level != level_no:
        return "stale"

    steps = list(db.session.execute(
        select(ApprovalStep).where(
            ApprovalStep.approval_id == approval.id,
            ApprovalStep.level == level_no,
        ).order_by(ApprovalStep.id)
    ).scalars())

    if any(s.status == "REJECTED" for s in steps):
        return _finalize(approval, level_no, "REJECTED", actor_user_id)

    levels = load_levels(approval.workflow) if approval.workflow else []
    level = find_level(levels, level_no)
    if level is None or not _level_complete(level, steps):
        return "waiting"

    next_level = find_level(levels, level_no + 1)
    if next_level is None:
        return _finalize(approval, level_no, "APPROVED", actor_user_id)
    return _advance(approval, level_no, next_level, actor_user_id)


def _advance(approval: QuotationApproval, level_no: int, next_level: ApprovalLevel,
             actor_user_id: int | None) -> str:
    approval_id = approval.id
    try:
        if not _compare_and_set(approval_id, level_no, current_level=next_level.level):
            db.session.rollback()
            logger.info(
                "Stale advancement from level %d ignored", level_no,
                extra={"approval_id": approval_id},
            )
            return "stale"
        db.session.add_all(_new_steps(approval_id, next_level))
        write_audit(
            entity_type="approval", entity_id=approval_id, action="approval.advance",
            actor_user_id=actor_user_id,
            diff={"current_level": {"old": level_no, "new": next_level.level},
                  "approvers": list(next_level.approver_user_ids)},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    db.session.expire(approval)

    logger.info(
        "Approval advanced to level %d (%s)", next_level.level, next_level.name,
        extra={"approval_id": approval_id},
    )
    return "advanced"


def _finalize(approval: QuotationApproval, level_no: int, outcome: str,
              actor_user_id: int | None) -> str:
    approval_id = approval.id
    try:
        if not _compare_and_set(approval_id, level_no, status=outcome, completed_at=_utcnow()):
            db.session.rollback()
            logger.info(
                "Stale finalization (%s) at level %d ignored", outcome, level_no,
                extra={"approval_id": approval_id},
            )
            return "stale"
        db.session.expire(approval)
        write_audit(
            entity_type="approval", entity_id=approval_id, action="approval.finalize",
            actor_user_id=actor_user_id,
            diff={"status": {"old": "PENDING", "new": outcome}, "level": level_no},
        )
        if outcome == "APPROVED":
            quotation_service.force_approve(
                approval.quotation, approval_id=approval_id, actor_user_id=actor_user_id,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Approval finalized %s at level %d", outcome, level_no,
        extra={"approval_id": approval_id, "quotation_id": approval.quotation_id},
    )
    return outcome.lower()
