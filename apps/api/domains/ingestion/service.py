"""Ingestion service: upload checks and off-loop parsing.

The parse itself is CPU-bound and runs in the ParseWorkerPool so the event
loop stays free. The pool is created lazily and shared by all requests;
nothing else crosses the boundary except the upload bytes and options.
"""

from typing import Any, Dict, Optional

import structlog

from apps.api.core.config import settings
from apps.api.core.errors import PayloadTooLargeError
from apps.api.domains.ingestion.schemas import IngestResponse, TransactionOut
from packages.statement_ingest.config import ParseOptions
from packages.statement_ingest.decoder import SUPPORTED_EXTENSIONS, file_extension
from packages.statement_ingest.errors import EmptyInput, IngestError, UnsupportedFormat
from packages.statement_ingest.models import ParseResult
from packages.statement_ingest.worker import ParseWorkerPool

logger = structlog.get_logger(__name__)

_pool: Optional[ParseWorkerPool] = None


def get_parse_pool() -> ParseWorkerPool:
    """FastAPI dependency: the process-wide parse pool."""
    global _pool
    if _pool is None:
        _pool = ParseWorkerPool(max_workers=settings.PARSE_WORKERS)
    return _pool


def shutdown_parse_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.shutdown()
        _pool = None


def validate_upload(filename: str, size: int, max_bytes: int) -> None:
    """Reject uploads the parser would refuse anyway, before reading them further.

    Raises:
        UnsupportedFormat: extension has no decoder.
        EmptyInput: zero-byte upload.
        PayloadTooLargeError: larger than ``max_bytes``.
    """
    ext = file_extension(filename)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(
            f"Unsupported file type {ext or '(none)'}. "
            f"Accepted: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    if size == 0:
        raise EmptyInput()
    if size > max_bytes:
        raise PayloadTooLargeError(
            f"File too large (max {max_bytes // (1024 * 1024)}MB)"
        )


def to_response(result: ParseResult) -> IngestResponse:
    return IngestResponse(
        transactions=[TransactionOut(**t.to_dict()) for t in result.transactions],
        count=len(result),
        skipped_rows=result.skipped_rows,
        conflicts=result.conflicts,
        sheet_name=result.sheet_name,
        sheet_names=list(result.sheet_names),
        header_row=result.header_row,
        warnings=list(result.warnings),
    )


def to_payload(result: ParseResult) -> Dict[str, Any]:
    """JSON-ready dict (wire field names) for task results."""
    return to_response(result).model_dump(by_alias=True)


def error_payload(exc: IngestError) -> Dict[str, Any]:
    return {"status": "error", "kind": exc.kind, "detail": exc.message}


async def parse_upload(
    pool: ParseWorkerPool,
    content: bytes,
    filename: str,
    options: ParseOptions,
) -> IngestResponse:
    """Parse one upload in the worker pool and shape the response.

    IngestError propagates to the API error handlers.
    """
    result = await pool.parse(content, filename, options)
    logger.info(
        "ingest_complete",
        count=len(result),
        skipped=result.skipped_rows,
        conflicts=result.conflicts,
    )
    return to_response(result)
