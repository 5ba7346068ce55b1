"""Exception handlers producing the ``{status, message}`` error envelope."""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.errors import AppError
from app.schemas.response import fail_body

logger = structlog.get_logger(__name__)


def _error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    envelope_status = "fail" if status_code < 500 and status_code != status.HTTP_404_NOT_FOUND else "error"
    return JSONResponse(
        status_code=status_code,
        content=fail_body(message, status=envelope_status),
        headers=headers,
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for typed application errors, validation errors and HTTP errors."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        # exc.detail is internal and never sent to the client
        log_fn(
            "api.app_error",
            path=request.url.path,
            method=request.method,
            error=type(exc).__name__,
            status_code=exc.status_code,
            message=exc.message,
            detail=exc.detail,
        )
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return _error_response(exc.status_code, exc.message, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("api.validation_error", path=request.url.path, errors=len(exc.errors()))
        return _error_response(status.HTTP_400_BAD_REQUEST, _validation_message(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Not Found" if exc.status_code == status.HTTP_404_NOT_FOUND else str(exc.detail)
        return _error_response(exc.status_code, message, getattr(exc, "headers", None))
