import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import ValidationError
from app.utils.responses import error_body

logger = logging.getLogger(__name__)


def _validation_errors(errors: list) -> list:
    formatted = []
    for err in errors:
        location = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        formatted.append({
            "field": ".".join(location) or None,
            "message": err.get("msg"),
        })
    return formatted


def _http_error_response(exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    errors = None
    if isinstance(detail, dict):
        errors = detail.get("errors")
        message = detail.get("message") or str(detail)
    elif isinstance(detail, list):
        errors = detail
        message = "Request failed"
    else:
        message = str(detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, errors),
        headers=getattr(exc, "headers", None),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return _http_error_response(exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_body("Validation failed", _validation_errors(exc.errors())),
    )


def register_exception_handlers(app: FastAPI):
    """Route handler errors never reach the middleware, so they get the same envelope here."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)

        except ValidationError as ve:
            return JSONResponse(
                status_code=422,
                content=error_body("Validation failed", _validation_errors(ve.errors())),
            )

        except HTTPException as he:
            # Raised by other middleware (e.g. the rate limiter)
            return _http_error_response(he)

        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content=error_body("Internal server error"),
            )
