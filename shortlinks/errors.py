"""Error taxonomy and the JSON error envelope.

Every failure a client can observe is one of the ``ShortLinkError`` subclasses
below. Services raise them; the handlers registered by
``register_exception_handlers`` render them as::

    {"errors": [{"status": "409", "title": "Conflict", "detail": "..."}]}

Anything else escaping a route becomes a 500 with a generic detail.
"""

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

__all__ = [
    "ShortLinkError",
    "InvalidInput",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "Conflict",
    "RateLimited",
    "ServiceUnavailable",
    "error_body",
    "register_exception_handlers",
]

logger = logging.getLogger("shortlinks")

GENERIC_SERVER_ERROR = "An unexpected error occurred while processing the request"


class ShortLinkError(Exception):
    status_code: int = 500
    title: str = "Server Error"

    def __init__(self, detail: str, *, title: str | None = None, headers: dict[str, str] | None = None):
        super().__init__(detail)
        self.detail = detail
        if title is not None:
            self.title = title
        self.headers = headers


class InvalidInput(ShortLinkError):
    status_code = 400
    title = "Bad Request"


class Unauthenticated(ShortLinkError):
    status_code = 401
    title = "Unauthorized"


class Forbidden(ShortLinkError):
    status_code = 403
    title = "Forbidden"


class NotFound(ShortLinkError):
    status_code = 404
    title = "Not Found"


class Conflict(ShortLinkError):
    status_code = 409
    title = "Conflict"


class RateLimited(ShortLinkError):
    status_code = 429
    title = "Too Many Requests"


class ServiceUnavailable(ShortLinkError):
    status_code = 503
    title = "Service Unavailable"


def error_body(status_code: int, title: str, detail: str) -> dict:
    return {"errors": [{"status": str(status_code), "title": title, "detail": detail}]}


def _describe_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = error.get("msg", "Invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


async def _handle_shortlink_error(request: Request, exc: ShortLinkError) -> JSONResponse:
    detail = exc.detail
    if exc.status_code == 500:
        logger.error("%s on %s %s", exc.detail, request.method, request.url.path)
        detail = GENERIC_SERVER_ERROR
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.title, detail),
        headers=exc.headers,
    )


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_body(400, "Bad Request", _describe_validation_error(exc)),
    )


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        detail = "The requested resource does not exist"
    else:
        detail = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, HTTPStatus(exc.status_code).phrase, detail),
        headers=getattr(exc, "headers", None),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(500, "Server Error", GENERIC_SERVER_ERROR),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShortLinkError, _handle_shortlink_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)
