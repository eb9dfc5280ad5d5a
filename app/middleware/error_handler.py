"""Global error handling.

Every error leaves the API as ``{error, details, request_id}`` with an
``X-Request-ID`` header, whether it was raised as an ``AppException``,
produced by request validation, or escaped as an unexpected exception.
"""

import logging
import traceback
import uuid
from typing import Any, Callable, Dict

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import AppException

logger = logging.getLogger(__name__)


def error_response(
    request_id: str,
    status_code: int,
    message: str,
    details: Any = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "error": message,
        "details": details if details is not None else {},
        "request_id": request_id,
    }
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": request_id},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and turn stray exceptions into JSON."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        except AppException as exc:
            logger.warning(
                f"Application error: {exc.message}",
                extra={
                    "request_id": request_id,
                    "status_code": exc.status_code,
                    "details": exc.details,
                },
            )
            return error_response(request_id, exc.status_code, exc.message, exc.details)

        except Exception as exc:
            logger.error(
                f"Unhandled exception on {request.method} {request.url.path}: {exc}",
                extra={
                    "request_id": request_id,
                    "traceback": traceback.format_exc(),
                },
            )
            return error_response(request_id, 500, "Internal server error")


def setup_exception_handlers(app: FastAPI) -> None:
    """Register handlers for application, validation and HTTP errors.

    Args:
        app: FastAPI application instance.
    """

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request,
        exc: AppException,
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        if exc.status_code >= 500:
            logger.error(f"Application error: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return error_response(request_id, exc.status_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Report body/query validation failures as 400."""
        request_id = getattr(request.state, "request_id", "unknown")
        errors = jsonable_encoder(exc.errors())
        fields = {
            ".".join(str(part) for part in error["loc"] if part != "body"): error["msg"]
            for error in errors
        }
        return error_response(
            request_id,
            400,
            "Validation error",
            {"fields": fields, "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        response = error_response(request_id, exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response
