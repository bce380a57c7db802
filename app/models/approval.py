"""
Sales Operations Platform
Quotation approval workflow models.

Models:
    - ApprovalWorkflow:   named, prioritised rule bundle (conditions + levels)
    - QuotationApproval:  one quotation's run through a matched workflow
    - ApprovalStep:       one approver's decision slot within one level

Architecture:
    ApprovalWorkflow ──1:N──▶ QuotationApproval ──1:N──▶ ApprovalStep
    Quotation        ──1:N──▶ QuotationApproval

Conditions and levels are stored as JSON on the workflow row. They are
validated into typed definitions at write time and re-parsed on read by
app/services/approval_rules.py; never evaluate the raw JSON directly.

Lifecycle states:
    QuotationApproval:  PENDING (current_level 1..n) → APPROVED | REJECTED
    ApprovalStep:       PENDING → APPROVED | REJECTED
    Terminal rows are never mutated again.
"""

from datetime import datetime, timezone

from sqlalchemy import text

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = {"PENDING", "APPROVED", "REJECTED"}

STEP_STATUSES = {"PENDING", "APPROVED", "REJECTED"}

# Decisions an approver may record on a step
STEP_DECISIONS = {"APPROVED", "REJECTED"}

TERMINAL_APPROVAL_STATUSES = {"APPROVED", "REJECTED"}


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# ApprovalWorkflow
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalWorkflow(db.Model):
    """
    Rule bundle deciding which quotations need which approvals.

    conditions:      [{"field": "total_amount", "operator": "gte", "value": 100000}, ...]
                     AND-combined; an empty list matches every quotation.
    approval_levels: [{"level": 1, "name": "Manager", "approver_user_ids": [3, 4],
                       "require_all_approvers": false,
                       "auto_approval_timeout_hours": 24}, ...]
                     level numbers are contiguous from 1.
    priority:        higher is evaluated first; ties → oldest first.
    """

    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    conditions = db.Column(db.JSON, nullable=False, default=list)
    approval_levels = db.Column(db.JSON, nullable=False, default=list)
    priority = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_approval_workflows_active_priority", "is_active", "priority"),
    )

    approvals = db.relationship("QuotationApproval", back_populates="workflow", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "conditions": list(self.conditions or []),
            "approval_levels": list(self.approval_levels or []),
            "level_count": len(self.approval_levels or []),
            "priority": self.priority,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ApprovalWorkflow {self.id}: {self.name} (p={self.priority})>"


# ═════════════════════════════════════════════════════════════════════════════
# QuotationApproval
# ═════════════════════════════════════════════════════════════════════════════


class QuotationApproval(db.Model):
    """
    A quotation's run through a matched workflow.

    At most one PENDING row per quotation, enforced by a partial unique index
    on both PostgreSQL and SQLite. current_level only moves forward, and only
    through a compare-and-set update in approval_service.
    """

    __tablename__ = "quotation_approvals"

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    current_level = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(20), nullable=False, default="PENDING",
        comment="PENDING | APPROVED | REJECTED",
    )
    requested_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('PENDING','APPROVED','REJECTED')",
            name="ck_quotation_approval_status",
        ),
        db.Index(
            "uq_quotation_approvals_one_pending",
            "quotation_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        db.Index("ix_quotation_approvals_status_completed", "status", "completed_at"),
    )

    quotation = db.relationship("Quotation")
    workflow = db.relationship("ApprovalWorkflow", back_populates="approvals")
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    steps = db.relationship(
        "ApprovalStep", back_populates="approval",
        cascade="all, delete-orphan",
        order_by="[ApprovalStep.level, ApprovalStep.id]",
    )

    def to_dict(self, include_steps=True):
        levels = (self.workflow.approval_levels or []) if self.workflow else []
        current_name = next(
            (lv.get("name") for lv in levels if lv.get("level") == self.current_level),
            None,
        )
        result = {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "quotation": self.quotation.to_summary() if self.quotation else None,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow.name if self.workflow else None,
            "current_level": self.current_level,
            "current_level_name": current_name,
            "total_levels": len(levels),
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "requested_by": self.requested_by.to_summary() if self.requested_by else None,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_steps:
            result["steps"] = [s.to_dict() for s in self.steps]
        return result

    def __repr__(self):
        return f"<QuotationApproval {self.id} q={self.quotation_id} L{self.current_level} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# ApprovalStep
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalStep(db.Model):
    """
    One approver's decision within one level.

    Created in a batch when the approval enters the level; never deleted.
    Only the designated approver may move it out of PENDING, exactly once.
    """

    __tablename__ = "approval_steps"

    id = db.Column(db.Integer, primary_key=True)
    approval_id = db.Column(
        db.Integer, db.ForeignKey("quotation_approvals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    level = db.Column(db.Integer, nullable=False)
    approver_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default="PENDING",
        comment="PENDING | APPROVED | REJECTED",
    )
    comments = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('PENDING','APPROVED','REJECTED')",
            name="ck_approval_step_status",
        ),
        db.Index("ix_approval_steps_approval_level", "approval_id", "level"),
        db.Index("ix_approval_steps_approver_status", "approver_user_id", "status"),
    )

    approval = db.relationship("QuotationApproval", back_populates="steps")
    approver = db.relationship("User", foreign_keys=[approver_user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "approval_id": self.approval_id,
            "level": self.level,
            "approver_user_id": self.approver_user_id,
            "approver": self.approver.to_summary() if self.approver else None,
            "status": self.status,
            "comments": self.comments,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalStep {self.id} L{self.level} user={self.approver_user_id} {self.status}>"
