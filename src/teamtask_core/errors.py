"""Domain error taxonomy.

Each error carries the HTTP status it maps to and a short ``error`` label used
in the response body. Handlers registered in ``api.main`` render every one of
them as ``{"success": false, "message": ..., "error": ...}``.
"""


class DomainError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 400
    error: str = "Bad Request"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(DomainError):
    """Request is well-formed but cannot be applied in the current state."""

    status_code = 400
    error = "Bad Request"


class AuthenticationError(DomainError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    error = "Unauthorized"


class ForbiddenError(DomainError):
    """Authenticated, but not allowed to perform the action."""

    status_code = 403
    error = "Forbidden"


class NotFoundError(DomainError):
    """Referenced team, project, task or user does not exist."""

    status_code = 404
    error = "Not Found"


class ConflictError(DomainError):
    """Duplicate membership or registration against a verified email."""

    status_code = 409
    error = "Conflict"


class InvalidAssigneeError(DomainError):
    """Assignee is not an existing user or not a member of the task's team."""

    status_code = 400
    error = "Invalid Assignee"

    def __init__(self, message: str = "Assignee must be a member of the team"):
        super().__init__(message)
