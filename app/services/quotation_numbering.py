"""
Quotation Numbering Service.

Generates quotation numbers of the form

    {PREFIX}{SEP}{DATE}{SEP}{SEQ}        e.g. QUO-2024-000006

Configuration (Flask config, environment-driven — see app/config.py):
    QUOTATION_PREFIX           "QUO"
    QUOTATION_SEPARATOR        "-"
    QUOTATION_DATE_FORMAT      YYYY | YYYYMM | YYYYMMDD
    QUOTATION_SEQUENCE_LENGTH  zero-padded width of SEQ
    QUOTATION_RESET_SEQUENCE   NEVER | YEARLY | MONTHLY | DAILY

Sequence derivation: take the lexicographically last existing number inside
the current reset period, parse its trailing numeric suffix and add one; no
prior number in the period starts the sequence at 1.

Uniqueness is best-effort: the candidate is checked against existing rows
and bumped on collision, but two concurrent writers can still compute the
same number. The unique constraint on quotations.quotation_number is the
final guard; the create path surfaces that as ConflictError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app, has_app_context
from sqlalchemy import select

from app.core.exceptions import ConflictError
from app.models import db
from app.models.quotation import Quotation

logger = logging.getLogger(__name__)


DATE_FORMATS = {"YYYY": 4, "YYYYMM": 6, "YYYYMMDD": 8}
RESET_POLICIES = {"NEVER": 0, "YEARLY": 4, "MONTHLY": 6, "DAILY": 8}

# Collision bumps before giving up
MAX_COLLISION_RETRIES = 5


@dataclass(frozen=True)
class QuotationNumberConfig:
    prefix: str = "QUO"
    separator: str = "-"
    date_format: str = "YYYY"
    sequence_length: int = 6
    reset_sequence: str = "YEARLY"


DEFAULT_CONFIG = QuotationNumberConfig()


def get_number_config() -> QuotationNumberConfig:
    """Build the numbering config from the app config, falling back per field."""
    if not has_app_context():
        return DEFAULT_CONFIG
    cfg = current_app.config

    date_format = str(cfg.get("QUOTATION_DATE_FORMAT", DEFAULT_CONFIG.date_format)).upper()
    if date_format not in DATE_FORMATS:
        logger.warning("Unknown QUOTATION_DATE_FORMAT=%r — using %s",
                       date_format, DEFAULT_CONFIG.date_format)
        date_format = DEFAULT_CONFIG.date_format

    reset = str(cfg.get("QUOTATION_RESET_SEQUENCE", DEFAULT_CONFIG.reset_sequence)).upper()
    if reset not in RESET_POLICIES:
        logger.warning("Unknown QUOTATION_RESET_SEQUENCE=%r — using %s",
                       reset, DEFAULT_CONFIG.reset_sequence)
        reset = DEFAULT_CONFIG.reset_sequence

    try:
        length = int(cfg.get("QUOTATION_SEQUENCE_LENGTH", DEFAULT_CONFIG.sequence_length))
    except (TypeError, ValueError):
        length = 0
    if length < 1:
        logger.warning("Invalid QUOTATION_SEQUENCE_LENGTH — using %d", DEFAULT_CONFIG.sequence_length)
        length = DEFAULT_CONFIG.sequence_length

    return QuotationNumberConfig(
        prefix=cfg.get("QUOTATION_PREFIX") or DEFAULT_CONFIG.prefix,
        separator=cfg.get("QUOTATION_SEPARATOR", DEFAULT_CONFIG.separator) or "",
        date_format=date_format,
        sequence_length=length,
        reset_sequence=reset,
    )


def format_date_part(now: datetime, date_format: str) -> str:
    """YYYY → "2024", YYYYMM → "202403", YYYYMMDD → "20240315"."""
    full = now.strftime("%Y%m%d")
    return full[:DATE_FORMATS.get(date_format, 4)]


def sequence_scope(config: QuotationNumberConfig, now: datetime) -> str:
    """Number prefix shared by every number in the current reset period.

    The period can be no finer than the date part itself: with YYYY dates a
    DAILY reset would reuse numbers, so it degrades to the date part.
    """
    head = f"{config.prefix}{config.separator}"
    period_len = RESET_POLICIES[config.reset_sequence]
    if period_len == 0:
        return head
    date_part = format_date_part(now, config.date_format)
    if period_len >= len(date_part):
        return f"{head}{date_part}{config.separator}"
    return f"{head}{date_part[:period_len]}"


def parse_sequence(number: str, config: QuotationNumberConfig) -> int | None:
    """Trailing numeric suffix of *number*, or None if it is not numeric."""
    if config.separator:
        suffix = number.rsplit(config.separator, 1)[-1]
    else:
        suffix = number[-config.sequence_length:]
    return int(suffix) if suffix.isdigit() else None


def build_number(config: QuotationNumberConfig, now: datetime, sequence: int) -> str:
    date_part = format_date_part(now, config.date_format)
    seq = str(sequence).zfill(config.sequence_length)
    return f"{config.prefix}{config.separator}{date_part}{config.separator}{seq}"


def _last_number_in_scope(scope: str) -> str | None:
    return db.session.execute(
        select(Quotation.quotation_number)
        .where(Quotation.quotation_number.startswith(scope, autoescape=True))
        .order_by(Quotation.quotation_number.desc())
        .limit(1)
    ).scalar_one_or_none()


def _number_exists(number: str) -> bool:
    return db.session.execute(
        select(Quotation.id).where(Quotation.quotation_number == number)
    ).first() is not None


def generate_quotation_number(
    now: datetime | None = None,
    config: QuotationNumberConfig | None = None,
) -> str:
    """Return the next free quotation number for *now* (default: current UTC time).

    Raises:
        ConflictError: still colliding after MAX_COLLISION_RETRIES bumps.
    """
    now = now or datetime.now(timezone.utc)
    config = config or get_number_config()

    sequence = 1
    last = _last_number_in_scope(sequence_scope(config, now))
    if last:
        parsed = parse_sequence(last, config)
        if parsed is not None:
            sequence = parsed + 1

    for _ in range(MAX_COLLISION_RETRIES + 1):
        candidate = build_number(config, now, sequence)
        if not _number_exists(candidate):
            return candidate
        logger.warning("Quotation number collision on %s — retrying", candidate)
        sequence += 1

    raise ConflictError("Quotation", "quotation_number", candidate)
