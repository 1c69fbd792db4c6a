import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base exception rendered as a JSON error response."""
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class ValidationError(AppException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class InvalidFileError(ValidationError):
    """A file in an upload batch is too large or has a disallowed type."""
    def __init__(self, detail: str, filename: str | None = None):
        super().__init__(detail)
        self.filename = filename


class QuotaExceededError(AppException):
    def __init__(self, detail: str = "Plan limit exceeded. Please upgrade your plan."):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class UnauthorizedError(AppException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, detail)


class ForbiddenError(AppException):
    def __init__(self, detail: str = "Access denied"):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class NotFoundError(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status.HTTP_404_NOT_FOUND, detail)


class RateLimitError(AppException):
    def __init__(self, detail: str = "Too many requests"):
        super().__init__(status.HTTP_429_TOO_MANY_REQUESTS, detail)


class TransientStorageError(AppException):
    """Object store or network hiccup. The caller sees only a generic retry message."""
    def __init__(self, detail: str = "Storage temporarily unavailable"):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, detail)
        self.internal_detail = detail
        self.detail = "Something went wrong, please try again"


class JobExpiredLeaseError(Exception):
    """The worker no longer holds the lease on the job it was processing."""


class PermanentJobFailure(Exception):
    """The archive job cannot succeed and must not be retried automatically."""


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc!r}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)
