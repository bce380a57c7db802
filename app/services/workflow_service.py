"""
Approval Workflow Service — workflow definitions and the workflow matcher.

Design decisions:
    - Conditions and levels are validated into typed definitions
      (approval_rules.parse_conditions / parse_levels) before anything is
      persisted; the JSON columns only ever hold validated shapes.
    - Every approver referenced by a level must be an existing, active user.
    - Workflow names are unique. A duplicate name is a business-rule failure
      (ValidationError), matching the other definition checks.
    - A workflow with PENDING approvals cannot be deleted and its levels
      cannot be replaced; deactivate it instead (is_active=False) so running
      approvals keep their levels.

Matching:
    Active workflows are tried by priority descending, ties broken by
    created_at ascending then id ascending; the first workflow whose
    conditions all hold for the quotation wins.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.approval import ApprovalWorkflow, QuotationApproval
from app.models.audit import write_audit
from app.models.auth import User
from app.services.approval_rules import (
    ApprovalLevel,
    build_condition_record,
    evaluate_all,
    load_conditions,
    parse_conditions,
    parse_levels,
)

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _get_workflow(workflow_id: int) -> ApprovalWorkflow:
    workflow = db.session.get(ApprovalWorkflow, workflow_id)
    if workflow is None:
        raise NotFoundError("ApprovalWorkflow", workflow_id)
    return workflow


def _check_name_available(name: str, exclude_id: int | None = None) -> None:
    stmt = select(ApprovalWorkflow.id).where(ApprovalWorkflow.name == name)
    if exclude_id is not None:
        stmt = stmt.where(ApprovalWorkflow.id != exclude_id)
    if db.session.execute(stmt).first() is not None:
        raise ValidationError(
            "Workflow with this name already exists",
            details={"name": name},
            code="DUPLICATE_NAME",
        )


def _check_approvers(levels: list[ApprovalLevel]) -> None:
    """Every referenced approver must exist and be active."""
    wanted = {uid for lv in levels for uid in lv.approver_user_ids}
    found = {
        u.id
        for u in db.session.execute(select(User).where(User.id.in_(wanted))).scalars()
        if u.is_active
    }
    missing = sorted(wanted - found)
    if missing:
        raise ValidationError(
            f"Users not found or inactive: {', '.join(str(m) for m in missing)}",
            details={"approver_user_ids": missing},
        )


def _pending_count(workflow_id: int) -> int:
    return db.session.execute(
        select(func.count(QuotationApproval.id)).where(
            QuotationApproval.workflow_id == workflow_id,
            QuotationApproval.status == "PENDING",
        )
    ).scalar_one()


def _parse_name(raw) -> str:
    name = (raw or "").strip() if isinstance(raw, str) else ""
    if not name:
        raise ValidationError("name is required", details={"name": "is required"})
    if len(name) > 100:
        raise ValidationError("name must be at most 100 characters")
    return name


def _parse_priority(raw) -> int:
    if raw is None:
        return 1
    if not isinstance(raw, int) or isinstance(raw, bool) or raw < 1:
        raise ValidationError("priority must be an integer >= 1", details={"priority": raw})
    return raw


def _parse_is_active(raw) -> bool:
    if not isinstance(raw, bool):
        raise ValidationError("is_active must be a boolean", details={"is_active": raw})
    return raw


def _commit_workflow(name: str) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(
            "Workflow with this name already exists",
            details={"name": name},
            code="DUPLICATE_NAME",
        )


# ── Public API ─────────────────────────────────────────────────────────────────


def create_workflow(data: dict, created_by_user_id: int | None = None) -> dict:
    """Validate and persist a new approval workflow.

    Args:
        data: {name, description?, conditions?, approval_levels, priority?, is_active?}
        created_by_user_id: Author of the definition.

    Returns:
        Serialized workflow dict.

    Raises:
        ValidationError: duplicate name, malformed conditions/levels,
            non-sequential levels, or unknown/inactive approvers.
    """
    name = _parse_name(data.get("name"))
    _check_name_available(name)
    conditions = parse_conditions(data.get("conditions"))
    levels = parse_levels(data.get("approval_levels"))
    _check_approvers(levels)

    workflow = ApprovalWorkflow(
        name=name,
        description=(data.get("description") or "").strip(),
        conditions=[c.to_dict() for c in conditions],
        approval_levels=[lv.to_dict() for lv in levels],
        priority=_parse_priority(data.get("priority")),
        is_active=_parse_is_active(data.get("is_active", True)),
        created_by_user_id=created_by_user_id,
    )
    db.session.add(workflow)
    db.session.flush()
    write_audit(
        entity_type="workflow", entity_id=workflow.id, action="workflow.create",
        actor_user_id=created_by_user_id,
        diff={"name": name, "priority": workflow.priority, "levels": len(levels)},
    )
    _commit_workflow(name)

    logger.info(
        "Approval workflow created name=%s levels=%d", name, len(levels),
        extra={"workflow_id": workflow.id, "user_id": created_by_user_id},
    )
    return workflow.to_dict()


def list_workflows(active_only: bool = False) -> list[dict]:
    """All workflows in evaluation order (priority desc, oldest first)."""
    stmt = select(ApprovalWorkflow)
    if active_only:
        stmt = stmt.where(ApprovalWorkflow.is_active.is_(True))
    stmt = stmt.order_by(
        ApprovalWorkflow.priority.desc(),
        ApprovalWorkflow.created_at.asc(),
        ApprovalWorkflow.id.asc(),
    )
    return [w.to_dict() for w in db.session.execute(stmt).scalars()]


def get_workflow(workflow_id: int) -> dict:
    return _get_workflow(workflow_id).to_dict()


def update_workflow(workflow_id: int, data: dict, user_id: int | None = None) -> dict:
    """Partially update a workflow; supplied fields get the same checks as create.

    All supplied fields are validated before any is applied. Running
    approvals read their levels from the workflow row, so approval_levels
    cannot change while any approval against the workflow is PENDING.

    Raises:
        ValidationError: malformed fields, duplicate name, or a level change
            with pending approvals (HAS_PENDING_APPROVALS).
    """
    workflow = _get_workflow(workflow_id)

    changes: dict = {}
    if "name" in data:
        name = _parse_name(data["name"])
        if name != workflow.name:
            _check_name_available(name, exclude_id=workflow.id)
        changes["name"] = name
    if "description" in data:
        changes["description"] = (data["description"] or "").strip()
    if "conditions" in data:
        changes["conditions"] = [c.to_dict() for c in parse_conditions(data["conditions"])]
    if "approval_levels" in data:
        levels = parse_levels(data["approval_levels"])
        _check_approvers(levels)
        new_levels = [lv.to_dict() for lv in levels]
        if new_levels != workflow.approval_levels:
            pending = _pending_count(workflow.id)
            if pending:
                raise ValidationError(
                    "Cannot change approval levels while approvals are pending",
                    details={"pending_approvals": pending},
                    code="HAS_PENDING_APPROVALS",
                )
        changes["approval_levels"] = new_levels
    if "priority" in data:
        changes["priority"] = _parse_priority(data["priority"])
    if "is_active" in data:
        changes["is_active"] = _parse_is_active(data["is_active"])

    diff: dict = {}
    for key, new in changes.items():
        old = getattr(workflow, key)
        if old != new:
            diff[key] = {"old": old, "new": new}
            setattr(workflow, key, new)

    write_audit(
        entity_type="workflow", entity_id=workflow.id, action="workflow.update",
        actor_user_id=user_id, diff=diff,
    )
    _commit_workflow(workflow.name)
    logger.info("Approval workflow updated", extra={"workflow_id": workflow.id, "user_id": user_id})
    return workflow.to_dict()


def delete_workflow(workflow_id: int, user_id: int | None = None) -> None:
    """Delete a workflow with no PENDING approvals.

    Completed approvals keep their rows with workflow_id cleared.

    Raises:
        ValidationError: approvals are still running against it.
    """
    workflow = _get_workflow(workflow_id)
    pending = _pending_count(workflow.id)
    if pending:
        raise ValidationError(
            "Cannot delete workflow with pending approvals",
            details={"pending_approvals": pending},
            code="HAS_PENDING_APPROVALS",
        )

    db.session.execute(
        update(QuotationApproval)
        .where(QuotationApproval.workflow_id == workflow.id)
        .values(workflow_id=None)
        .execution_options(synchronize_session="fetch")
    )
    write_audit(
        entity_type="workflow", entity_id=workflow.id, action="workflow.delete",
        actor_user_id=user_id, diff={"name": workflow.name},
    )
    db.session.delete(workflow)
    db.session.commit()
    logger.info("Approval workflow deleted", extra={"workflow_id": workflow_id, "user_id": user_id})


def find_matching_workflow(quotation) -> ApprovalWorkflow | None:
    """Highest-priority active workflow whose conditions all hold for *quotation*."""
    record = build_condition_record(quotation)
    candidates = db.session.execute(
        select(ApprovalWorkflow)
        .where(ApprovalWorkflow.is_active.is_(True))
        .order_by(
            ApprovalWorkflow.priority.desc(),
            ApprovalWorkflow.created_at.asc(),
            ApprovalWorkflow.id.asc(),
        )
    ).scalars()
    for workflow in candidates:
        if evaluate_all(record, load_conditions(workflow)):
            logger.debug(
                "Workflow %s matched", workflow.name,
                extra={"workflow_id": workflow.id, "quotation_id": quotation.id},
            )
            return workflow
    return None
