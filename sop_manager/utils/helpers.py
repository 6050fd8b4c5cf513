"""Shared helpers for blueprints and services.

get_or_404:       tuple-return lookup for blueprints (NOT abort)
parse_date:       lenient, returns None on bad input (query-string filters)
parse_date_input: strict, raises ValidationError on bad input (request bodies)
paginate:         limit/offset over an already-filtered list
"""
import logging
from datetime import date, datetime

from flask import jsonify, request

from sop_manager.core.exceptions import ValidationError
from sop_manager.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

        obj, err = get_or_404(Department, dept_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def parse_date(value):
    """Parse YYYY-MM-DD, an ISO datetime or DD.MM.YYYY. Returns None for empty/invalid input."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field):
    """Same as parse_date() but a non-empty unparseable value is a field error."""
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid date for {field}",
            details={field: "Use YYYY-MM-DD or DD.MM.YYYY."},
        )
    return parsed


def paginate(items, default_limit=200, max_limit=1000):
    """Apply limit/offset query params to a list.

    Returns:
        (page_items, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total
