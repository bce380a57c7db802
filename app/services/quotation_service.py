"""
Quotation Service — lifecycle and CRUD for quotations.

Business rules:
    - Numbers come from quotation_numbering.generate_quotation_number.
    - Status changes through update_quotation are checked against
      QUOTATION_TRANSITIONS; anything else raises ValidationError naming the
      illegal from/to pair.
    - Once a quotation leaves DRAFT only its status may change.
    - Only DRAFT quotations may be deleted.
    - force_approve is the single privileged path to APPROVED that skips the
      transition table. It is reserved for approval_service on completion of
      the last approval level and refuses to run without a matching APPROVED
      approval record.

Rules:
  - db.session.commit() happens only in service modules.
  - force_approve never commits; the approval transaction owns it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.approval import QuotationApproval
from app.models.audit import write_audit
from app.models.customer import Customer, Product
from app.models.quotation import (
    QUOTATION_STATUSES,
    Quotation,
    QuotationItem,
    validate_quotation_transition,
)
from app.services.quotation_numbering import generate_quotation_number
from app.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

DEFAULT_TAX_RATE = Decimal("0.18")
DEFAULT_VALIDITY_DAYS = 30

# Fields editable while a quotation is still DRAFT
DRAFT_EDITABLE_FIELDS = {"valid_until", "notes", "terms_conditions", "items"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def _tax_rate() -> Decimal:
    if has_app_context():
        raw = current_app.config.get("QUOTATION_TAX_RATE", DEFAULT_TAX_RATE)
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            logger.warning("Invalid QUOTATION_TAX_RATE=%r — using %s", raw, DEFAULT_TAX_RATE)
    return DEFAULT_TAX_RATE


def _validity_days() -> int:
    if has_app_context():
        return int(current_app.config.get("QUOTATION_VALIDITY_DAYS", DEFAULT_VALIDITY_DAYS))
    return DEFAULT_VALIDITY_DAYS


def _get_quotation(quotation_id: int) -> Quotation:
    quotation = db.session.get(Quotation, quotation_id)
    if quotation is None:
        raise NotFoundError("Quotation", quotation_id)
    return quotation


# ── Line items & totals ──────────────────────────────────────────────────────


def _build_items(raw_items) -> list[QuotationItem]:
    """Validate raw item dicts against the catalogue and price each line.

    Each item: {product_id, quantity, unit_price?, discount_amount?}.
    unit_price defaults to the product's base_price.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Quotation must contain at least one item")

    product_ids = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict) or not isinstance(raw.get("product_id"), int):
            raise ValidationError(
                "Each item requires an integer product_id",
                details={f"items[{i}].product_id": "is required"},
            )
        product_ids.append(raw["product_id"])

    products = {
        p.id: p
        for p in db.session.execute(
            select(Product).where(Product.id.in_(product_ids), Product.is_active.is_(True))
        ).scalars()
    }
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise ValidationError(
            f"Products not found or inactive: {', '.join(str(m) for m in missing)}",
            details={"product_ids": missing},
        )

    items = []
    for i, raw in enumerate(raw_items):
        product = products[raw["product_id"]]
        quantity = raw.get("quantity", 1)
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(
                "quantity must be a positive integer",
                details={f"items[{i}].quantity": quantity},
            )
        if quantity < (product.min_order_qty or 1):
            raise ValidationError(
                f"Minimum order quantity for {product.name} is {product.min_order_qty}",
                details={f"items[{i}].quantity": quantity},
            )
        try:
            unit_price = _money(raw["unit_price"] if raw.get("unit_price") is not None
                                else product.base_price)
            discount = _money(raw.get("discount_amount") or 0)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(
                "unit_price and discount_amount must be numeric",
                details={f"items[{i}]": "invalid amount"},
            )
        if unit_price < 0 or discount < 0:
            raise ValidationError("Amounts cannot be negative", details={f"items[{i}]": "negative"})

        line_subtotal = unit_price * quantity
        if discount > line_subtotal:
            raise ValidationError(
                "Line discount exceeds line subtotal",
                details={f"items[{i}].discount_amount": float(discount)},
            )
        items.append(QuotationItem(
            product_id=product.id,
            quantity=quantity,
            unit_price=unit_price,
            discount_amount=discount,
            line_total=_money(line_subtotal - discount),
        ))
    return items


def calculate_totals(items: list[QuotationItem], tax_rate: Decimal | None = None) -> dict:
    """Subtotal, discount, tax and total for a set of priced lines."""
    rate = _tax_rate() if tax_rate is None else tax_rate
    subtotal = sum((Decimal(i.unit_price) * i.quantity for i in items), Decimal("0"))
    discount = sum((Decimal(i.discount_amount) for i in items), Decimal("0"))
    tax = (subtotal - discount) * rate
    return {
        "subtotal": _money(subtotal),
        "discount_amount": _money(discount),
        "tax_amount": _money(tax),
        "total_amount": _money(subtotal - discount + tax),
    }


def _apply_totals(quotation: Quotation) -> None:
    for key, value in calculate_totals(quotation.items).items():
        setattr(quotation, key, value)


def _insert_quotation(quotation: Quotation) -> None:
    number = quotation.quotation_number
    try:
        db.session.add(quotation)
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        # quotation_number unique constraint lost a race with a concurrent writer
        raise ConflictError("Quotation", "quotation_number", number)


# ── Public API ───────────────────────────────────────────────────────────────


def create_quotation(data: dict, created_by_user_id: int | None = None) -> dict:
    """Create a DRAFT quotation with priced items and a fresh number.

    Args:
        data: {customer_id, items: [...], valid_until?, notes?, terms_conditions?}
        created_by_user_id: Authoring user.

    Raises:
        NotFoundError: customer does not exist.
        ValidationError: inactive customer, no items, bad products/quantities.
    """
    customer_id = data.get("customer_id")
    customer = db.session.get(Customer, customer_id) if customer_id else None
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    if not customer.is_active:
        raise ValidationError("Cannot create quotation for inactive customer")

    items = _build_items(data.get("items"))

    try:
        valid_until = parse_date_input(data.get("valid_until"))
    except ValueError:
        raise ValidationError("valid_until must be an ISO date", details={"valid_until": data.get("valid_until")})
    if valid_until is None:
        valid_until = (_utcnow() + timedelta(days=_validity_days())).date()

    quotation = Quotation(
        quotation_number=generate_quotation_number(),
        customer_id=customer.id,
        status="DRAFT",
        valid_until=valid_until,
        notes=(data.get("notes") or "").strip(),
        terms_conditions=(data.get("terms_conditions") or "").strip(),
        created_by_user_id=created_by_user_id,
    )
    quotation.items = items
    _apply_totals(quotation)
    _insert_quotation(quotation)
    write_audit(
        entity_type="quotation", entity_id=quotation.id, action="quotation.create",
        actor_user_id=created_by_user_id,
        diff={"quotation_number": quotation.quotation_number,
              "total_amount": float(quotation.total_amount)},
    )
    db.session.commit()

    logger.info(
        "Quotation created",
        extra={"quotation_id": quotation.id, "user_id": created_by_user_id},
    )
    return quotation.to_dict()


def get_quotation(quotation_id: int) -> dict:
    return _get_quotation(quotation_id).to_dict()


def list_quotations(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    number: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Filtered, paginated quotation list — newest first."""
    stmt = select(Quotation)
    if status:
        if status not in QUOTATION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(QUOTATION_STATUSES))}")
        stmt = stmt.where(Quotation.status == status)
    if customer_id:
        stmt = stmt.where(Quotation.customer_id == customer_id)
    if number:
        stmt = stmt.where(Quotation.quotation_number.contains(number, autoescape=True))

    total = db.session.execute(
        select(func.count()).select_from(stmt.subquery())
    ).scalar_one()
    rows = db.session.execute(
        stmt.order_by(Quotation.created_at.desc(), Quotation.id.desc())
        .limit(limit).offset(offset)
    ).scalars().all()
    return {
        "items": [q.to_dict(include_items=False) for q in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


def update_quotation(quotation_id: int, data: dict, user_id: int | None = None) -> dict:
    """Update a quotation through the transition-checked path.

    Raises:
        NotFoundError: unknown quotation.
        ValidationError: illegal status transition, or non-status edits on a
            non-draft quotation.
    """
    quotation = _get_quotation(quotation_id)
    old_status = quotation.status
    new_status = data.get("status")

    if quotation.status != "DRAFT":
        other = sorted(k for k in data if k != "status")
        if other:
            raise ValidationError(
                "Only status can be updated for non-draft quotations",
                details={"fields": other},
            )

    if new_status is not None and new_status != old_status:
        if not isinstance(new_status, str) or new_status not in QUOTATION_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(QUOTATION_STATUSES))}",
                details={"status": new_status},
            )
        if not validate_quotation_transition(old_status, new_status):
            raise ValidationError(
                f"Invalid status transition from {old_status} to {new_status}",
                details={"from": old_status, "to": new_status},
                code="ILLEGAL_TRANSITION",
            )

    changes = {}
    if quotation.status == "DRAFT":
        if "valid_until" in data:
            try:
                quotation.valid_until = parse_date_input(data["valid_until"])
            except ValueError:
                raise ValidationError("valid_until must be an ISO date")
            changes["valid_until"] = data["valid_until"]
        for key in ("notes", "terms_conditions"):
            if key in data:
                setattr(quotation, key, (data[key] or "").strip())
                changes[key] = getattr(quotation, key)
        if "items" in data:
            quotation.items = _build_items(data["items"])
            _apply_totals(quotation)
            changes["total_amount"] = float(quotation.total_amount)

    if new_status is not None and new_status != old_status:
        quotation.status = new_status
        write_audit(
            entity_type="quotation", entity_id=quotation.id, action="quotation.transition",
            actor_user_id=user_id,
            diff={"status": {"old": old_status, "new": new_status}},
        )
    if changes:
        write_audit(
            entity_type="quotation", entity_id=quotation.id, action="quotation.update",
            actor_user_id=user_id, diff=changes,
        )
    db.session.commit()

    logger.info(
        "Quotation updated %s → %s", old_status, quotation.status,
        extra={"quotation_id": quotation.id, "user_id": user_id},
    )
    return quotation.to_dict()


def delete_quotation(quotation_id: int, user_id: int | None = None) -> None:
    """Delete a DRAFT quotation (its approval history goes with it)."""
    quotation = _get_quotation(quotation_id)
    if quotation.status != "DRAFT":
        raise ValidationError("Only draft quotations can be deleted")

    pending = db.session.execute(
        select(QuotationApproval.id).where(
            QuotationApproval.quotation_id == quotation.id,
            QuotationApproval.status == "PENDING",
        )
    ).first()
    if pending:
        raise ValidationError("Cannot delete a quotation with a pending approval request")

    write_audit(
        entity_type="quotation", entity_id=quotation.id, action="quotation.delete",
        actor_user_id=user_id, diff={"quotation_number": quotation.quotation_number},
    )
    db.session.delete(quotation)
    db.session.commit()
    logger.info("Quotation deleted", extra={"quotation_id": quotation_id, "user_id": user_id})


def duplicate_quotation(quotation_id: int, data: dict | None = None,
                        user_id: int | None = None) -> dict:
    """Copy a quotation's lines under a new number.

    data: {customer_id?, notes?, reset_status? (default True)}
    The copy is DRAFT unless reset_status is False, in which case it keeps the
    original status.
    """
    data = data or {}
    original = _get_quotation(quotation_id)

    customer_id = data.get("customer_id") or original.customer_id
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)

    status = "DRAFT" if data.get("reset_status", True) else original.status
    copy = Quotation(
        quotation_number=generate_quotation_number(),
        customer_id=customer.id,
        status=status,
        valid_until=(_utcnow() + timedelta(days=_validity_days())).date(),
        terms_conditions=original.terms_conditions,
        notes=data.get("notes") or original.notes,
        created_by_user_id=user_id,
    )
    copy.items = [
        QuotationItem(
            product_id=i.product_id,
            quantity=i.quantity,
            unit_price=i.unit_price,
            discount_amount=i.discount_amount,
            line_total=i.line_total,
        )
        for i in original.items
    ]
    for key in ("subtotal", "discount_amount", "tax_amount", "total_amount"):
        setattr(copy, key, getattr(original, key))
    _insert_quotation(copy)
    write_audit(
        entity_type="quotation", entity_id=copy.id, action="quotation.duplicate",
        actor_user_id=user_id,
        diff={"source_quotation_id": original.id, "quotation_number": copy.quotation_number},
    )
    db.session.commit()
    return copy.to_dict()


def force_approve(quotation: Quotation, *, approval_id: int, actor_user_id: int | None = None) -> None:
    """Set a quotation to APPROVED, bypassing QUOTATION_TRANSITIONS.

    Privileged: only valid as the side effect of an approval that has just
    been finalized as APPROVED for this same quotation. Does not commit.

    Raises:
        ValidationError: approval missing, not APPROVED, or for another quotation.
    """
    approval = db.session.get(QuotationApproval, approval_id)
    if (
        approval is None
        or approval.quotation_id != quotation.id
        or approval.status != "APPROVED"
    ):
        raise ValidationError(
            "Forced approval requires a completed approval for this quotation",
            details={"quotation_id": quotation.id, "approval_id": approval_id},
        )

    old_status = quotation.status
    quotation.status = "APPROVED"
    quotation.updated_at = _utcnow()
    write_audit(
        entity_type="quotation", entity_id=quotation.id, action="quotation.force_approve",
        actor_user_id=actor_user_id,
        diff={"status": {"old": old_status, "new": "APPROVED"}, "approval_id": approval_id},
    )
    logger.info(
        "Quotation force-approved %s → APPROVED", old_status,
        extra={"quotation_id": quotation.id, "approval_id": approval_id},
    )
