"""
Application-wide exception hierarchy.

Services raise these; blueprints register one handler per type and get
consistent HTTP status codes everywhere.

Usage:
    from sop_manager.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Document", resource_id=doc_id)
    raise ValidationError("nextRevisionDate too early", details={"nextRevisionDate": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested document, change request or user does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Document", "ChangeRequest").
        resource_id: The id that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Field-level problems (missing person list, malformed document code,
    revision-date ordering) go in ``details``, keyed by field name.

    Maps to HTTP 422.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when the requested status is not reachable from the current one.

    The actor is allowed to act; the target state is illegal. Maps to HTTP 409.
    """

    def __init__(self, from_status: str, to_status: str | None, role: str | None = None,
                 reason: str | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.role = role
        self.reason = reason
        msg = f"Cannot move from '{from_status}' to '{to_status}'"
        if role:
            msg += f" as {role}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": "INVALID_TRANSITION",
            "from": self.from_status,
            "to": self.to_status,
            "role": self.role,
        }


class AuthenticationRequired(Exception):
    """Raised when no valid bearer token accompanies a protected request (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class PermissionDenied(Exception):
    """Raised when the actor's role lacks the capability for an action.

    Also used when the actor is not assigned to the document. Maps to HTTP 403.
    """

    def __init__(self, role: str | None, action: str, reason: str | None = None) -> None:
        self.role = role
        self.action = action
        self.reason = reason
        msg = f"Role '{role}' may not '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value (409)."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")
