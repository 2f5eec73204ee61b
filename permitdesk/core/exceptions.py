"""
Platform-wide exception hierarchy.

Services raise these typed outcomes; they never build HTTP responses.
The app factory registers one error handler per type so every blueprint
maps them to the same status codes:

    NotFoundError   → 404
    ForbiddenError  → 403
    ValidationError → 400
    ConflictError   → 409
    TransientError  → 503

Usage:
    from permitdesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Permit", resource_id=permit_id)
    raise ValidationError("title is required", field="title")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable entity name (e.g. "Permit", "Milestone").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the principal lacks the capability an operation requires.

    The public message is intentionally generic: it never names the
    caller's role or the missing capability. Those live on the instance
    for logging only.

    Args:
        permit_id: Permit the check ran against.
        user_id: Principal that was denied.
        permission: Capability token that was required.
    """

    public_message = "You don't have permission to perform this action"

    def __init__(
        self,
        permit_id: str | None = None,
        user_id: str | None = None,
        permission: str | None = None,
    ) -> None:
        self.permit_id = permit_id
        self.user_id = user_id
        self.permission = permission
        super().__init__(self.public_message)


class ValidationError(Exception):
    """Raised when create/update input is malformed or breaks a business rule.

    Always raised before any state change. Only the first failing field is
    reported.

    Args:
        message: Human-readable explanation of what failed.
        field: Name of the offending input field, if any.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique key.

    Args:
        resource: Model name.
        field: The unique field (or field combination) that would be duplicated.
        value: The conflicting value (logged, not returned).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class TransientError(Exception):
    """Raised when the datastore is unavailable. Never retried internally."""

    def __init__(self, message: str = "Datastore temporarily unavailable") -> None:
        super().__init__(message)
