"""
Approval Rules — typed workflow definitions and the condition evaluator.

A workflow stores its conditions and levels as JSON. This module is the only
place that JSON is interpreted:

  - parse_conditions / parse_levels validate raw definitions at write time
    (workflow create/update) and raise ValidationError on anything malformed.
  - load_conditions / load_levels re-hydrate stored JSON into the typed
    Condition / ApprovalLevel definitions for the matcher and state machine.
  - build_condition_record flattens a quotation and its customer/items into
    the record conditions are evaluated against.
  - evaluate_condition never raises. A non-numeric operand for a numeric
    operator or a non-list operand for in/nin evaluates False. A missing
    field equals nothing: ne and nin hold, every other operator is False.

Supported field paths form a closed registry (FIELD_PATHS). Unknown paths
are rejected when a workflow is written; at evaluation time an unknown path
simply resolves to MISSING.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from app.core.exceptions import ValidationError


# ── Field registry ───────────────────────────────────────────────────────────

QUOTATION_FIELDS = frozenset({
    "id",
    "quotation_number",
    "status",
    "subtotal",
    "discount_amount",
    "tax_amount",
    "total_amount",
    "valid_until",
    "item_count",
    "total_quantity",
    "created_by_user_id",
})

CUSTOMER_FIELDS = frozenset({
    "id",
    "company_name",
    "customer_type",
    "industry",
    "city",
    "state",
    "country",
    "credit_limit",
    "is_active",
})

FIELD_PATHS = QUOTATION_FIELDS | {f"customer.{name}" for name in CUSTOMER_FIELDS}


class _Missing:
    """Sentinel for a field path that did not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()


# ── Typed definitions ────────────────────────────────────────────────────────


class Operator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NIN = "nin"


NUMERIC_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
SET_OPERATORS = frozenset({Operator.IN, Operator.NIN})


@dataclass(frozen=True)
class Condition:
    field: str
    operator: Operator
    value: Any

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class ApprovalLevel:
    level: int
    name: str
    approver_user_ids: tuple[int, ...] = ()
    require_all_approvers: bool = False
    # Stored and returned only; nothing acts on it.
    auto_approval_timeout_hours: int | None = None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "name": self.name,
            "approver_user_ids": list(self.approver_user_ids),
            "require_all_approvers": self.require_all_approvers,
            "auto_approval_timeout_hours": self.auto_approval_timeout_hours,
        }


# ── Boundary validation (write time) ─────────────────────────────────────────


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_conditions(raw) -> list[Condition]:
    """Validate a raw conditions list into typed Conditions.

    Raises:
        ValidationError: field path not in FIELD_PATHS, unknown operator,
            or in/nin without a list value.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("conditions must be an array")

    errors: dict[str, str] = {}
    parsed: list[Condition] = []
    for i, item in enumerate(raw):
        key = f"conditions[{i}]"
        if not isinstance(item, dict):
            errors[key] = "must be an object with field, operator, value"
            continue
        path = (item.get("field") or "").strip() if isinstance(item.get("field"), str) else ""
        if not path:
            errors[f"{key}.field"] = "is required"
            continue
        if path not in FIELD_PATHS:
            errors[f"{key}.field"] = f"unsupported field path '{path}'"
            continue
        try:
            op = Operator(item.get("operator"))
        except ValueError:
            errors[f"{key}.operator"] = (
                f"must be one of: {', '.join(o.value for o in Operator)}"
            )
            continue
        if "value" not in item:
            errors[f"{key}.value"] = "is required"
            continue
        value = item["value"]
        if op in SET_OPERATORS and not isinstance(value, list):
            errors[f"{key}.value"] = f"operator '{op.value}' requires an array value"
            continue
        parsed.append(Condition(field=path, operator=op, value=value))

    if errors:
        raise ValidationError("Invalid workflow conditions", details=errors)
    return parsed


def parse_levels(raw) -> list[ApprovalLevel]:
    """Validate a raw approval-level list into typed ApprovalLevels.

    Level numbers must form {1, ..., n} for n >= 1; every level needs a name
    and at least one approver. Approver existence is checked by the caller
    (it needs the database).

    Returns levels sorted by level number.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("approval_levels must be a non-empty array")

    errors: dict[str, str] = {}
    parsed: list[ApprovalLevel] = []
    for i, item in enumerate(raw):
        key = f"approval_levels[{i}]"
        if not isinstance(item, dict):
            errors[key] = "must be an object"
            continue
        number = item.get("level")
        if not _is_int(number) or number < 1:
            errors[f"{key}.level"] = "must be an integer >= 1"
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            errors[f"{key}.name"] = "is required"
            continue
        approvers = item.get("approver_user_ids")
        if not isinstance(approvers, list) or not approvers:
            errors[f"{key}.approver_user_ids"] = "must be a non-empty array of user ids"
            continue
        if not all(_is_int(a) for a in approvers):
            errors[f"{key}.approver_user_ids"] = "user ids must be integers"
            continue
        if len(set(approvers)) != len(approvers):
            errors[f"{key}.approver_user_ids"] = "duplicate approver in level"
            continue
        require_all = item.get("require_all_approvers", False)
        if not isinstance(require_all, bool):
            errors[f"{key}.require_all_approvers"] = "must be a boolean"
            continue
        timeout = item.get("auto_approval_timeout_hours")
        if timeout is not None and (not _is_int(timeout) or timeout < 1):
            errors[f"{key}.auto_approval_timeout_hours"] = "must be an integer >= 1"
            continue
        parsed.append(ApprovalLevel(
            level=number,
            name=name.strip(),
            approver_user_ids=tuple(approvers),
            require_all_approvers=require_all,
            auto_approval_timeout_hours=timeout,
        ))

    if errors:
        raise ValidationError("Invalid approval levels", details=errors)

    numbers = sorted(lv.level for lv in parsed)
    if numbers != list(range(1, len(numbers) + 1)):
        raise ValidationError(
            "Approval levels must be sequential starting from 1",
            details={"levels": numbers},
        )
    return sorted(parsed, key=lambda lv: lv.level)


# ── Re-hydration (read time) ─────────────────────────────────────────────────


def load_conditions(workflow) -> list[Condition]:
    """Typed conditions of a stored workflow."""
    return [
        Condition(field=c["field"], operator=Operator(c["operator"]), value=c.get("value"))
        for c in (workflow.conditions or [])
    ]


def load_levels(workflow) -> list[ApprovalLevel]:
    """Typed levels of a stored workflow, ordered by level number."""
    levels = [
        ApprovalLevel(
            level=lv["level"],
            name=lv.get("name", ""),
            approver_user_ids=tuple(lv.get("approver_user_ids") or ()),
            require_all_approvers=bool(lv.get("require_all_approvers", False)),
            auto_approval_timeout_hours=lv.get("auto_approval_timeout_hours"),
        )
        for lv in (workflow.approval_levels or [])
    ]
    return sorted(levels, key=lambda lv: lv.level)


def find_level(levels: list[ApprovalLevel], number: int) -> ApprovalLevel | None:
    return next((lv for lv in levels if lv.level == number), None)


# ── Record construction ──────────────────────────────────────────────────────


def _plain(value):
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def build_condition_record(quotation) -> dict:
    """Flatten a quotation with its customer and items into an evaluation record."""
    items = list(quotation.items or [])
    record = {
        "id": quotation.id,
        "quotation_number": quotation.quotation_number,
        "status": quotation.status,
        "subtotal": _plain(quotation.subtotal),
        "discount_amount": _plain(quotation.discount_amount),
        "tax_amount": _plain(quotation.tax_amount),
        "total_amount": _plain(quotation.total_amount),
        "valid_until": _plain(quotation.valid_until),
        "item_count": len(items),
        "total_quantity": sum(i.quantity or 0 for i in items),
        "created_by_user_id": quotation.created_by_user_id,
    }
    customer = quotation.customer
    if customer is not None:
        record["customer"] = {name: _plain(getattr(customer, name)) for name in CUSTOMER_FIELDS}
    return record


# ── Evaluation ───────────────────────────────────────────────────────────────


def resolve_field(record, path: str):
    """Walk *path* segment by segment; MISSING if any segment is absent."""
    value = record
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return MISSING
    return value


def _to_number(value) -> float | None:
    """Numeric coercion for gt/gte/lt/lte; None when not a finite number."""
    if value is None or value is MISSING or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(Decimal(value.strip()))
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def evaluate_condition(record, condition: Condition) -> bool:
    """Evaluate one condition against a record. Never raises."""
    actual = resolve_field(record, condition.field)
    if actual is MISSING:
        # An absent value equals nothing, so only the negative operators hold
        if condition.operator is Operator.NE:
            return True
        if condition.operator is Operator.NIN:
            return isinstance(condition.value, list)
        return False

    op = condition.operator
    if op in NUMERIC_OPERATORS:
        left, right = _to_number(actual), _to_number(condition.value)
        if left is None or right is None:
            return False
        if op is Operator.GT:
            return left > right
        if op is Operator.GTE:
            return left >= right
        if op is Operator.LT:
            return left < right
        return left <= right

    if op is Operator.EQ:
        return _strict_equal(actual, condition.value)
    if op is Operator.NE:
        return not _strict_equal(actual, condition.value)

    if not isinstance(condition.value, list):
        return False
    member = any(_strict_equal(actual, candidate) for candidate in condition.value)
    return member if op is Operator.IN else not member


def _strict_equal(left, right) -> bool:
    """Equality without cross-type coercion: 1 != "1", True != 1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    numeric = (int, float)
    if isinstance(left, numeric) and isinstance(right, numeric):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def evaluate_all(record, conditions: list[Condition]) -> bool:
    """AND over all conditions; an empty list matches."""
    return all(evaluate_condition(record, c) for c in conditions)
