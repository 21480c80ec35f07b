"""
core/errors.py -- Error taxonomy shared by every layer.

Each error carries the HTTP status and the short label the API writes into
the {"error": label, "message": text} envelope. Stores and the authorization
model raise these; api/main.py owns the single exception handler that
renders them.

Expected conditions (no due date, not overdue) are plain None/False return
values, never exceptions.

Layer rule: core/ is the kernel. No imports from api/, auth/, or tracker/.
"""


class TrackerError(Exception):
    """Base class for every domain error the API knows how to render."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.error)
        self.message = message or self.error


class Unauthorized(TrackerError):
    """No credential, or the credential could not be verified."""

    status_code = 401
    error = "Unauthorized"


class Forbidden(TrackerError):
    """Authenticated, but the principal may not perform this operation."""

    status_code = 403
    error = "Forbidden"


class ValidationError(TrackerError):
    status_code = 400
    error = "Validation Error"


class NotFound(TrackerError):
    status_code = 404
    error = "Not Found"


class Conflict(TrackerError):
    status_code = 409
    error = "Conflict"
