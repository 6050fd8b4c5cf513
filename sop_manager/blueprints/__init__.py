"""
SOP Document Manager
Blueprint registry and shared request helpers.
"""

from flask import request

from sop_manager.utils.errors import E, api_error


def json_body(required=()):
    """Parse the JSON object body of a write request.

    Returns:
        (data, None) on success, (None, error_response) when the body is not
        a JSON object or a ``required`` key is missing or blank.
    """
    data = request.get_json(silent=True)
    if data is None and request.content_length in (None, 0):
        data = {}
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    missing = [k for k in required if data.get(k) in (None, "")]
    if missing:
        return None, api_error(E.VALIDATION_REQUIRED, f"Missing required field(s): {', '.join(missing)}",
                               details={k: "required" for k in missing})
    return data, None


def query_flag(name):
    """``?name=true|false`` → True / False; absent or unparseable → None."""
    raw = request.args.get(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if raw in ("1", "true", "yes"):
        return True
    if raw in ("0", "false", "no"):
        return False
    return None
