"""Domain exceptions raised by the scheduling services.

Each exception carries the HTTP status the error handler answers with, so
services never import anything from the web layer.
"""


class AppException(Exception):
    """Base application exception."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        """Initialize exception with a message, falling back to the class default."""
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestException(AppException):
    """Request is well formed but breaks a scheduling rule."""

    status_code = 400
    default_message = "Bad request"


class ForbiddenException(AppException):
    """Caller may not act on the resource."""

    status_code = 403
    default_message = "Forbidden"


class NotFoundException(AppException):
    """A referenced record does not exist."""

    status_code = 404
    default_message = "Resource not found"


class ConflictException(AppException):
    """The resource is held by someone else, e.g. a slot already booked."""

    status_code = 409
    default_message = "Conflict"


class PersistenceException(AppException):
    """Unexpected database failure inside a transaction."""

    default_message = "Database operation failed"
