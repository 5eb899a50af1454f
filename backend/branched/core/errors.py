"""Domain errors raised by the conversation-tree services.

Services raise these; ``branched.main`` renders them as
``{"detail": ...}`` JSON with the matching status code.
"""

from fastapi import status


class BranchedError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class UnauthenticatedError(BranchedError):
    """Missing, malformed or expired bearer credential."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid authentication credentials"


class NotFoundOrForbiddenError(BranchedError):
    """The resource does not exist or belongs to another user.

    Both cases share one error so callers cannot probe which ids exist.
    """

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Session not found"


class ValidationError(BranchedError):
    """Empty message, oversized message or malformed parent reference."""

    status_code = 422
    default_detail = "Invalid request"


class ConflictError(BranchedError):
    """A concurrent structural mutation prevented the change."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Session is being modified, please retry"


class WorkerUnavailableError(BranchedError):
    """Response generation could not be scheduled.

    Never surfaced to the client: the node is created and marked failed.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Response worker unavailable"
