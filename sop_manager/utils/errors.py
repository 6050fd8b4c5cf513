"""Standardised API error responses.

Usage
-----
    from sop_manager.utils.errors import api_error, E, register_error_handlers

    return api_error(E.VALIDATION_REQUIRED, "action is required")
    register_error_handlers(document_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from sop_manager.core.exceptions import (
    AuthenticationRequired,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_TRANSITION: 409,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Blueprint error handlers ──────────────────────────────────────────
def register_error_handlers(bp):
    """Map the domain exceptions to HTTP responses on one blueprint."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return jsonify({"error": str(error), "details": error.details}), 422

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        return jsonify(error.to_dict()), 409

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return jsonify({"error": f"{error.resource} not found"}), 404

    @bp.errorhandler(AuthenticationRequired)
    def _handle_unauthenticated(error: AuthenticationRequired):
        return jsonify({"error": str(error), "code": E.UNAUTHENTICATED}), 401

    @bp.errorhandler(PermissionDenied)
    def _handle_forbidden(error: PermissionDenied):
        return jsonify({"error": str(error), "role": error.role, "action": error.action}), 403

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return jsonify({"error": str(error), "code": E.CONFLICT_DUPLICATE, "field": error.field}), 409

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error"}), 500

    return bp
