"""
Sales Operations Platform
Blueprint registry and shared request helpers.
"""

from flask import current_app, request


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (ValueError, TypeError):
        return default


def pagination_args():
    """(limit, offset) from the query string.

    limit is clamped to 1..API_MAX_PAGE_SIZE and defaults to
    API_DEFAULT_PAGE_SIZE; a negative offset becomes 0.
    """
    default_limit = current_app.config.get("API_DEFAULT_PAGE_SIZE", 50)
    max_limit = current_app.config.get("API_MAX_PAGE_SIZE", 500)
    limit = min(max(_int_arg("limit", default_limit), 1), max_limit)
    offset = max(_int_arg("offset", 0), 0)
    return limit, offset
