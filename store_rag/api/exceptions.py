"""
Exception handlers for the FastAPI application.

Domain errors are mapped to HTTP status codes with a consistent
``ErrorResponse`` body.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from store_rag.api.models import ErrorDetail, ErrorResponse
from store_rag.errors import (
    ReconnectionRequiredError,
    SearchUnavailableError,
    StoreLockedError,
    StoreRAGError,
)
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


def error_response(status_code: int, code: str, message: str,
                   details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Set up exception handlers for the FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(StoreLockedError)
    async def store_locked_handler(request: Request, exc: StoreLockedError) -> JSONResponse:
        logger.warning("Store locked", path=request.url.path, store_id=exc.store_id)
        return error_response(status.HTTP_409_CONFLICT, "STORE_LOCKED", exc.message, exc.details)

    @app.exception_handler(SearchUnavailableError)
    async def search_unavailable_handler(request: Request, exc: SearchUnavailableError) -> JSONResponse:
        logger.error("Search unavailable", path=request.url.path, error=exc.message)
        return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "SEARCH_UNAVAILABLE", exc.message, exc.details)

    @app.exception_handler(ReconnectionRequiredError)
    async def reconnection_handler(request: Request, exc: ReconnectionRequiredError) -> JSONResponse:
        logger.warning("Store must reconnect", path=request.url.path, store_id=exc.store_id)
        return error_response(status.HTTP_401_UNAUTHORIZED, "RECONNECTION_REQUIRED", exc.message, exc.details)

    @app.exception_handler(StoreRAGError)
    async def store_rag_error_handler(request: Request, exc: StoreRAGError) -> JSONResponse:
        logger.error(
            "Pipeline error",
            path=request.url.path,
            error=exc.message,
            error_type=type(exc).__name__
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "PIPELINE_ERROR", exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors."""
        error_details = [
            {
                "field": " -> ".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]

        logger.warning(
            "Request validation error",
            path=request.url.path,
            method=request.method,
            errors=error_details
        )
        return error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": error_details, "error_count": len(error_details)}
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("Value error", path=request.url.path, method=request.method, error=str(exc))
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_VALUE", str(exc))

    @app.exception_handler(KeyError)
    async def key_error_handler(request: Request, exc: KeyError) -> JSONResponse:
        missing = exc.args[0] if exc.args else None
        logger.warning("Resource not found", path=request.url.path, key=missing)
        return error_response(
            status.HTTP_404_NOT_FOUND,
            "NOT_FOUND",
            f"Not found: {missing}",
            {"key": missing}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_SERVER_ERROR",
            "An unexpected error occurred",
            {"error_type": type(exc).__name__}
        )
