"""
Domain exception hierarchy.

Services raise these; blueprints register one handler per type and map
them to HTTP status codes.  Every error kind a caller can observe is
listed here, so no blueprint ever has to import from a service module
to catch a failure.

Usage:
    from pharmatrack.core.exceptions import NotFoundError, ConflictError

    raise NotFoundError(resource="ProductionLine", resource_id=line_id)
    raise ConflictError("Production line with this name already exists")
"""


class NotFoundError(Exception):
    """Raised when an entity id does not resolve.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "ProductionLine", "User").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" with ID {resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a field rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.  Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a unique-constraint violation or an "already deactivated" entity.

    Maps to HTTP 409.

    Args:
        message: User-facing conflict description.
        field: Optional unique field that collided, for logs.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when a business rule blocks the operation.

    Examples: adding a process to an inactive production line, deactivating
    a line that still owns unfinished processes.

    Maps to HTTP 409 with a distinct error code.
    """


class UnauthorizedError(Exception):
    """Raised for bad credentials or an unusable token.

    The message is always generic so the response never reveals whether an
    email exists or why a token was rejected.  Maps to HTTP 401.
    """

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when an authenticated actor lacks the required role.  Maps to HTTP 403."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)
