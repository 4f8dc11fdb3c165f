from typing import Any, Mapping
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.core.exceptions import CustomException, InvariantViolation
from app.core.logging import request_logger, access_logger

def error_response(
    status_code: int,
    detail: Any,
    error_type: str,
    headers: Mapping[str, str] | None = None
) -> JSONResponse:
    """Every error body has the same three keys; access denials put {reason, message} in detail."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "status_code": status_code, "type": error_type},
        headers=headers
    )

def setup_error_handlers(app: FastAPI) -> None:
    """Configure error handlers for the application."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Denials, missing records, invalid states and conflicts."""
        return error_response(exc.status_code, exc.detail, "http_error", getattr(exc, "headers", None))

    @app.exception_handler(InvariantViolation)
    async def invariant_violation_handler(request: Request, exc: InvariantViolation) -> JSONResponse:
        # Corrupt collaborator data; the caller only learns that something broke
        if not exc.reported:
            access_logger.critical(
                "Access invariant violated",
                extra={
                    "error": str(exc.detail),
                    "event_id": exc.event_id,
                    "path": request.url.path
                }
            )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal access-control error",
            "invariant_violation"
        )

    @app.exception_handler(CustomException)
    async def custom_exception_handler(request: Request, exc: CustomException) -> JSONResponse:
        return error_response(exc.status_code, exc.detail, "custom_error")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed ids, unknown visibility names and bad payloads never reach the store."""
        return error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            jsonable_encoder(exc.errors()),
            "validation_error"
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_logger.error(
            "Unhandled exception",
            extra={
                "error": str(exc),
                "error_type": exc.__class__.__name__,
                "path": request.url.path
            },
            exc_info=True
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "server_error"
        )
