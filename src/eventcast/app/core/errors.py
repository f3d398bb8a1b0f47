from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .hub import ValidationError

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    404: "not_found",
    405: "method_not_allowed",
}


def standard_error(status: int, code: str, message: str, details: dict | None = None):
    return {"error": {"status": status, "code": code, "message": message, "details": details or {}}}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        payload = standard_error(exc.status_code, code, exc.detail if exc.detail else "HTTP error")
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = {"errors": exc.errors()}
        payload = standard_error(422, "validation_error", "Validation failed", details)
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(ValidationError)
    async def publish_validation_handler(request: Request, exc: ValidationError):
        payload = standard_error(400, "validation_error", str(exc) or "Invalid request")
        return JSONResponse(status_code=400, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        payload = standard_error(500, "server_error", "Internal server error")
        return JSONResponse(status_code=500, content=payload)
