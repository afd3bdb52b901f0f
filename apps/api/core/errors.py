"""RFC 7807 Problem Details error handling.

Provides centralized exception handlers and the mapping from ingestion
errors to problem responses. All errors return a consistent JSON format:

    {
        "type": "urn:statement-ingest:schema_inference",
        "title": "Unprocessable Entity",
        "status": 422,
        "detail": "Could not find a date column.",
        "instance": "/api/v1/ingest/statement"
    }
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from packages.statement_ingest.errors import (
    EmptyInput,
    IngestError,
    MalformedInput,
    NoValidRows,
    SchemaInferenceError,
    UnsupportedFormat,
)

logger = structlog.get_logger(__name__)

PROBLEM_TYPE_PREFIX = "urn:statement-ingest:"


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str, status_code: int = 500, error_type: str = "about:blank"):
        self.detail = detail
        self.status_code = status_code
        self.error_type = error_type
        super().__init__(detail)


class PayloadTooLargeError(AppError):
    """Upload exceeds the configured size limit."""

    def __init__(self, detail: str = "Upload too large"):
        super().__init__(
            detail=detail, status_code=413, error_type=PROBLEM_TYPE_PREFIX + "payload_too_large"
        )


# Ingest error class -> HTTP status. Checked in order, subclasses first.
_INGEST_STATUS = [
    (UnsupportedFormat, 415),
    (EmptyInput, 400),
    (MalformedInput, 400),
    (SchemaInferenceError, 422),
    (NoValidRows, 422),
]


def ingest_status(exc: IngestError) -> int:
    for error_cls, status in _INGEST_STATUS:
        if isinstance(exc, error_cls):
            return status
    return 400


def from_ingest_error(exc: IngestError) -> AppError:
    """Convert a terminal parse failure into a problem-details AppError."""
    return AppError(
        detail=exc.message,
        status_code=ingest_status(exc),
        error_type=PROBLEM_TYPE_PREFIX + exc.kind,
    )


def _build_problem_detail(
    status: int,
    title: str,
    detail: str,
    error_type: str = "about:blank",
    instance: str = "",
    request_id: str = "",
) -> dict:
    """Build RFC 7807 Problem Details response body."""
    body = {
        "type": error_type,
        "title": title,
        "status": status,
        "detail": detail,
    }
    if instance:
        body["instance"] = instance
    if request_id:
        body["request_id"] = request_id
    return body


# HTTP status code to title mapping
_STATUS_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    415: "Unsupported Media Type",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


def _problem_response(request: Request, exc: AppError) -> JSONResponse:
    body = _build_problem_detail(
        status=exc.status_code,
        title=_STATUS_TITLES.get(exc.status_code, "Error"),
        detail=exc.detail,
        error_type=exc.error_type,
        instance=str(request.url.path),
        request_id=getattr(request.state, "request_id", ""),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        media_type="application/problem+json",
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return _problem_response(request, exc)

    @app.exception_handler(IngestError)
    async def ingest_error_handler(request: Request, exc: IngestError) -> JSONResponse:
        logger.info("ingest_rejected", kind=exc.kind, detail=exc.message)
        return _problem_response(request, from_ingest_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return _problem_response(request, AppError(detail=detail, status_code=exc.status_code))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=str(request.url.path))
        return _problem_response(
            request, AppError(detail="An unexpected error occurred", status_code=500)
        )
