from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppError(HTTPException):
    """Base for errors the services raise; rendered by FastAPI as ``{"detail": ...}``."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail_default = "Internal error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.detail_default,
        )


class ValidationError(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Invalid request"


class ConflictError(AppError):
    status_code_default = status.HTTP_409_CONFLICT
    detail_default = "Conflict"


class UnauthorizedError(AppError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    detail_default = "Unauthorized"


class NotFoundError(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND
    detail_default = "Not found"


class RateLimitedError(AppError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    detail_default = "Rate limit exceeded"


class InternalError(AppError):
    # Never carries the underlying cause; callers log it before raising.
    def __init__(self) -> None:
        super().__init__(self.detail_default)


def _describe(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = [_describe(error) for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "; ".join(messages) or "Invalid request"},
    )
