"""Application error taxonomy.

Every error raised on purpose by the service layer derives from ``AppError``
and is turned into the standard ``ErrorResponse`` envelope by the handler
registered in ``app.main``.
"""

from typing import Optional

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class InvalidArgument(AppError):
    code = "INVALID_ARGUMENT"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(AppError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(AppError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class QuotaExceeded(AppError):
    code = "QUOTA_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, limit: int, retry_after_seconds: Optional[int] = None):
        super().__init__(f"Monthly quick query limit reached ({limit}).")
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds


class UpstreamUnavailable(AppError):
    """Demographic API could not be used. Never leaves the demographic client."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UpstreamRejected(AppError):
    code = "UPSTREAM_REJECTED"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, upstream_status: Optional[str] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
