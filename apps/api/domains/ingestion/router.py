"""Ingestion router: statement upload endpoints.

POST /ingest/statement parses inline (in the worker pool) and returns the
normalized transactions. POST /ingest/statement/async queues the same parse
on Celery for large files; GET /ingest/tasks/{task_id} polls it.
"""

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile

from apps.api.celery_app import celery_app
from apps.api.core.config import settings
from apps.api.core.errors import PROBLEM_TYPE_PREFIX, AppError
from apps.api.core.logging import bind_upload_context, clear_upload_context
from apps.api.domains.ingestion.schemas import (
    IngestResponse,
    IngestTaskAccepted,
    IngestTaskStatus,
)
from apps.api.domains.ingestion.service import (
    get_parse_pool,
    parse_upload,
    validate_upload,
)
from apps.api.tasks.ingestion_tasks import encode_content, parse_statement_task
from packages.statement_ingest.worker import ParseWorkerPool

router = APIRouter(prefix="/ingest", tags=["ingestion"])
logger = structlog.get_logger()


@router.post("/statement", response_model=IngestResponse)
async def ingest_statement(
    file: UploadFile = File(...),
    password: Optional[str] = Form(None),
    sheet: Optional[str] = Form(None),
    pool: ParseWorkerPool = Depends(get_parse_pool),
):
    """Accept a CSV or Excel statement and return normalized transactions.

    Ingest failures surface as RFC 7807 problems typed by error kind.
    """
    filename = file.filename or ""
    bind_upload_context(request_id=str(uuid.uuid4()), filename=filename)
    try:
        contents = await file.read()
        validate_upload(filename, len(contents), settings.MAX_UPLOAD_BYTES)

        options = settings.parse_options(sheet=sheet or None, password=password or None)
        return await parse_upload(pool, contents, filename, options)
    finally:
        clear_upload_context()


@router.post("/statement/async", response_model=IngestTaskAccepted, status_code=202)
async def ingest_statement_async(
    file: UploadFile = File(...),
    password: Optional[str] = Form(None),
    sheet: Optional[str] = Form(None),
):
    """
    Queue a statement parse on the Celery worker.

    Workbook passwords are refused here: the task message sits in the broker
    until a worker takes it, so encrypted workbooks go through the inline
    endpoint.
    """
    if password:
        raise AppError(
            detail="Password-protected workbooks cannot be queued; use /ingest/statement.",
            status_code=422,
            error_type=PROBLEM_TYPE_PREFIX + "password_not_queued",
        )
    filename = file.filename or ""
    contents = await file.read()
    validate_upload(filename, len(contents), settings.MAX_UPLOAD_BYTES)

    task = parse_statement_task.delay(
        encode_content(contents), filename, sheet or None
    )
    logger.info("ingest_queued", task_id=task.id, filename=filename, size=len(contents))
    return IngestTaskAccepted(task_id=task.id)


@router.get("/tasks/{task_id}", response_model=IngestTaskStatus)
async def get_ingest_task(task_id: str):
    """Poll a queued parse. Failed parses report their error kind."""
    result = celery_app.AsyncResult(task_id)
    if not result.ready():
        return IngestTaskStatus(task_id=task_id, status=result.status.lower())

    if result.failed():
        logger.error("ingest_task_crashed", task_id=task_id, error=str(result.result))
        return IngestTaskStatus(
            task_id=task_id,
            status="error",
            error={"kind": "internal", "detail": "Parsing failed unexpectedly"},
        )

    payload = dict(result.result)
    if payload.pop("status", None) == "error":
        return IngestTaskStatus(task_id=task_id, status="error", error=payload)
    return IngestTaskStatus(task_id=task_id, status="success", result=payload)
