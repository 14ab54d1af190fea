from fastapi import status


class DomainError(Exception):
    """Base for errors the API layer turns into ``{"error", "message"}``."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Bad Request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.error)
        self.message = message or self.error


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation Error"


class Unauthorized(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class NotFoundOrUnauthorized(NotFound):
    # same status and shape as NotFound so non-owners learn nothing
    error = "Not Found"


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"
