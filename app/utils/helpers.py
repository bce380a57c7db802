"""Shared parsing helpers used by services and blueprints.

parse_date_input:  raises ValueError on bad input (request bodies)
parse_bool_arg:    "true"/"1"/"yes" query flags
"""
from datetime import date, datetime


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD.MM.YYYY, date objects.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.")
    try:
        return date.fromisoformat(value)
    except ValueError:
        try:
            return datetime.strptime(value, "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def parse_bool_arg(value) -> bool | None:
    """Query-string flag → bool; None when absent."""
    if value is None:
        return None
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
