from typing import Any

from fastapi import status


RATE_LIMIT_MESSAGE = "Too many attempts, try again later"


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Validation error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class AuthError(AppError):
    """No usable identity: missing, invalid or expired credentials."""

    code = "AUTH_ERROR"
    message = "Authentication failed"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionError(AppError):  # type: ignore[override]
    """Identity present but not allowed. The message never names the permission."""

    code = "PERMISSION_DENIED"
    message = "Insufficient permissions"
    status_code = status.HTTP_403_FORBIDDEN


class RateLimitedError(AppError):
    code = "RATE_LIMITED"
    message = RATE_LIMIT_MESSAGE
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__(message, details={"retry_after": self.retry_after})

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after)}


class ConflictError(ValidationError):
    """Administrative input that clashes with existing state, e.g. a duplicate code."""

    code = "CONFLICT_ERROR"
    message = "Resource conflict"
    status_code = status.HTTP_409_CONFLICT


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


ERROR_CODE_BY_STATUS: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.code,
    status.HTTP_401_UNAUTHORIZED: AuthError.code,
    status.HTTP_403_FORBIDDEN: PermissionError.code,
    status.HTTP_404_NOT_FOUND: NotFoundError.code,
    status.HTTP_409_CONFLICT: ConflictError.code,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.code,
    status.HTTP_429_TOO_MANY_REQUESTS: RateLimitedError.code,
}


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


def resolve_error_code(status_code: int) -> str:
    if status_code in ERROR_CODE_BY_STATUS:
        return ERROR_CODE_BY_STATUS[status_code]
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return InternalError.code
    return "UNKNOWN_ERROR"
