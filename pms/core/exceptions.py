"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. Every error carries a
stable ``kind`` string so callers outside HTTP can branch on it without
importing the class.

Usage:
    from pms.core.exceptions import NotFoundError, ForbiddenError

    raise NotFoundError(resource="Report", resource_id=report_id)
    raise ForbiddenError("Only the report creator can edit this report")
"""


class DomainError(Exception):
    """Base class for errors the service layer raises on purpose."""

    kind = "error"


class NotFoundError(DomainError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Report", "Project").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    kind = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidStatusError(DomainError):
    """Raised when a requested status is not a member of the status enum."""

    kind = "invalid_status"

    def __init__(self, status) -> None:
        self.status = status
        super().__init__(f"Invalid status: {status!r}")


class ForbiddenError(DomainError):
    """Raised when the acting user may not perform the operation.

    The message is shown to end users verbatim, so it must read as a
    complete sentence (e.g. "Only Developer, PM, or CTO can change status
    to In Progress").

    Args:
        message: Human-readable denial reason.
        reason: Optional machine-readable reason code
                (``no_such_transition`` | ``role_not_authorized`` | ...).
    """

    kind = "forbidden"

    def __init__(self, message: str, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


class ValidationError(DomainError):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint): this
    exception signals that the data was well-formed but violated a business
    rule (missing required field, unknown enum value, already deleted).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    kind = "validation"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(DomainError):
    """Raised when a conditional write loses to a concurrent writer.

    The stored state no longer matches what the caller checked against;
    the caller should reload and retry once.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        resource_id: PK of the contested row, if it has one yet.
        expected: The value the caller authorized against.
        message: Overrides the generated message.
    """

    kind = "conflict"

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        expected: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        if message is None:
            message = f"{resource} id={resource_id} was modified concurrently"
            if expected is not None:
                message += f" (expected status={expected!r})"
        super().__init__(message)


class StoreUnavailableError(DomainError):
    """Raised when the persistence layer fails to read or write.

    Wraps the underlying SQLAlchemy error as ``__cause__``. Maps to HTTP 503.
    """

    kind = "store_unavailable"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Report store unavailable during {operation}")


class ImmutableRecordError(DomainError):
    """Raised when code tries to update or delete a write-once row."""

    kind = "immutable"

    def __init__(self, resource: str, resource_id=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} id={resource_id} is append-only")
