"""initial_sales_ops_schema

Creates the quotation approval schema:
  - users, customers, products
  - quotations, quotation_items
  - approval_workflows, quotation_approvals, approval_steps
  - audit_logs

quotation_approvals carries a partial unique index
(uq_quotation_approvals_one_pending) so a quotation can have at most one
PENDING approval at a time.

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 5e1c0a9d2b71
Revises:
Create Date: 2026-10-19 09:12:44.318201
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1c0a9d2b71'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Users ─────────────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=True,
                      comment="admin | sales_manager | sales_rep | finance"),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_status", "users", ["status"])

    # ── Customers & products ──────────────────────────────────────────────
    if "customers" not in existing:
        op.create_table(
            "customers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("company_name", sa.String(length=200), nullable=False),
            sa.Column("contact_person", sa.String(length=150), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("customer_type", sa.String(length=30), nullable=True,
                      comment="enterprise | mid_market | smb | government | distributor"),
            sa.Column("industry", sa.String(length=100), nullable=True),
            sa.Column("city", sa.String(length=100), nullable=True),
            sa.Column("state", sa.String(length=100), nullable=True),
            sa.Column("country", sa.String(length=100), nullable=True),
            sa.Column("credit_limit", sa.Numeric(14, 2), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if "products" not in existing:
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sku", sa.String(length=60), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("base_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("min_order_qty", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sku"),
        )

    # ── Quotations ────────────────────────────────────────────────────────
    if "quotations" not in existing:
        op.create_table(
            "quotations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("quotation_number", sa.String(length=60), nullable=False,
                      comment="Auto-generated: {PREFIX}{SEP}{DATE}{SEP}{SEQ}"),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT",
                      comment="DRAFT | SENT | APPROVED | REJECTED | EXPIRED"),
            sa.Column("subtotal", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("valid_until", sa.Date(), nullable=True),
            sa.Column("terms_conditions", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.CheckConstraint(
                "status IN ('DRAFT','SENT','APPROVED','REJECTED','EXPIRED')",
                name="ck_quotation_status",
            ),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("quotation_number"),
        )
        op.create_index("ix_quotations_customer_id", "quotations", ["customer_id"])
        op.create_index("ix_quotations_status", "quotations", ["status"])

    if "quotation_items" not in existing:
        op.create_table(
            "quotation_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("quotation_id", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("line_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quotation_items_quotation_id", "quotation_items", ["quotation_id"])

    # ── Approval workflows ────────────────────────────────────────────────
    if "approval_workflows" not in existing:
        op.create_table(
            "approval_workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("conditions", sa.JSON(), nullable=False),
            sa.Column("approval_levels", sa.JSON(), nullable=False),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )
        op.create_index(
            "ix_approval_workflows_active_priority", "approval_workflows",
            ["is_active", "priority"],
        )

    if "quotation_approvals" not in existing:
        op.create_table(
            "quotation_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("quotation_id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=True),
            sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING",
                      comment="PENDING | APPROVED | REJECTED"),
            sa.Column("requested_by_user_id", sa.Integer(), nullable=True),
            sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "status IN ('PENDING','APPROVED','REJECTED')",
                name="ck_quotation_approval_status",
            ),
            sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["requested_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quotation_approvals_quotation_id", "quotation_approvals", ["quotation_id"])
        op.create_index("ix_quotation_approvals_workflow_id", "quotation_approvals", ["workflow_id"])
        op.create_index(
            "ix_quotation_approvals_status_completed", "quotation_approvals",
            ["status", "completed_at"],
        )
        op.create_index(
            "uq_quotation_approvals_one_pending", "quotation_approvals", ["quotation_id"],
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        )

    if "approval_steps" not in existing:
        op.create_table(
            "approval_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("approval_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False),
            sa.Column("approver_user_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING",
                      comment="PENDING | APPROVED | REJECTED"),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint(
                "status IN ('PENDING','APPROVED','REJECTED')",
                name="ck_approval_step_status",
            ),
            sa.ForeignKeyConstraint(["approval_id"], ["quotation_approvals.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_user_id"], ["users.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_steps_approval_id", "approval_steps", ["approval_id"])
        op.create_index("ix_approval_steps_approver_user_id", "approval_steps", ["approver_user_id"])
        op.create_index("ix_approval_steps_approval_level", "approval_steps", ["approval_id", "level"])
        op.create_index(
            "ix_approval_steps_approver_status", "approval_steps",
            ["approver_user_id", "status"],
        )

    # ── Audit trail ───────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor_user_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "approval_steps",
        "quotation_approvals",
        "approval_workflows",
        "quotation_items",
        "quotations",
        "products",
        "customers",
        "users",
    ):
        op.drop_table(table)
