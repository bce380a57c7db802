"""
Sales Operations Platform
Quotation domain models.

Models:
    - Quotation:      priced offer to a customer, numbered QUO-2024-000001
    - QuotationItem:  one product line of a quotation

Architecture:
    Customer ──1:N──▶ Quotation ──1:N──▶ QuotationItem ──N:1──▶ Product
    Quotation ──1:N──▶ QuotationApproval  (see app/models/approval.py)

Lifecycle states:
    Quotation:  DRAFT → SENT → APPROVED | REJECTED | EXPIRED
                DRAFT → REJECTED,  APPROVED → REJECTED,  EXPIRED → SENT
                REJECTED is terminal.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

QUOTATION_STATUSES = {"DRAFT", "SENT", "APPROVED", "REJECTED", "EXPIRED"}

# Statuses from which an approval request may be raised
APPROVABLE_STATUSES = {"DRAFT", "SENT"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

QUOTATION_TRANSITIONS = {
    "DRAFT":    ["SENT", "REJECTED"],
    "SENT":     ["APPROVED", "REJECTED", "EXPIRED"],
    "APPROVED": ["REJECTED"],
    "REJECTED": [],
    "EXPIRED":  ["SENT"],
}


def validate_quotation_transition(old_status, new_status):
    """Return True if Quotation status transition is valid."""
    return new_status in QUOTATION_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# Quotation
# ═════════════════════════════════════════════════════════════════════════════


class Quotation(db.Model):
    """
    Priced offer to a customer.

    Number format is configurable (see app/services/quotation_numbering.py);
    the number is assigned once at creation and never changes.
    Monetary columns are stored rounded to 2 decimals.
    """

    __tablename__ = "quotations"

    id = db.Column(db.Integer, primary_key=True)
    quotation_number = db.Column(
        db.String(60), unique=True, nullable=False,
        comment="Auto-generated: {PREFIX}{SEP}{DATE}{SEP}{SEQ}",
    )
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default="DRAFT",
        comment="DRAFT | SENT | APPROVED | REJECTED | EXPIRED",
    )

    # Totals
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    valid_until = db.Column(db.Date, nullable=True)
    terms_conditions = db.Column(db.Text, default="")
    notes = db.Column(db.Text, default="")

    created_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('DRAFT','SENT','APPROVED','REJECTED','EXPIRED')",
            name="ck_quotation_status",
        ),
        db.Index("ix_quotations_status", "status"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    customer = db.relationship("Customer", back_populates="quotations")
    items = db.relationship(
        "QuotationItem", back_populates="quotation",
        cascade="all, delete-orphan", order_by="QuotationItem.id",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    def to_summary(self):
        """Compact view embedded in approval payloads."""
        return {
            "id": self.id,
            "quotation_number": self.quotation_number,
            "customer_name": self.customer.company_name if self.customer else None,
            "total_amount": float(self.total_amount) if self.total_amount is not None else None,
            "status": self.status,
        }

    def to_dict(self, include_items=True):
        result = {
            "id": self.id,
            "quotation_number": self.quotation_number,
            "customer_id": self.customer_id,
            "customer": {
                "id": self.customer.id,
                "company_name": self.customer.company_name,
                "contact_person": self.customer.contact_person,
                "email": self.customer.email,
            } if self.customer else None,
            "status": self.status,
            "subtotal": float(self.subtotal or 0),
            "discount_amount": float(self.discount_amount or 0),
            "tax_amount": float(self.tax_amount or 0),
            "total_amount": float(self.total_amount or 0),
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "terms_conditions": self.terms_conditions,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_items:
            result["items"] = [i.to_dict() for i in self.items]
        return result

    def __repr__(self):
        return f"<Quotation {self.quotation_number} [{self.status}]>"


class QuotationItem(db.Model):
    """One priced product line; line_total = quantity × unit_price − discount_amount."""

    __tablename__ = "quotation_items"

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    product_id = db.Column(
        db.Integer, db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    quotation = db.relationship("Quotation", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "sku": self.product.sku,
                "name": self.product.name,
            } if self.product else None,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price or 0),
            "discount_amount": float(self.discount_amount or 0),
            "line_total": float(self.line_total or 0),
        }
