"""Celery tasks for queued statement parsing.

The task receives base64 bytes (JSON serializer) and returns either the
IngestResponse payload or a tagged error payload. Ingest errors are never
retried: the same bytes always fail the same way. Workbook passwords are never
accepted, so no secret is written to the broker.
"""

import base64
import binascii
from typing import Any, Dict, Optional

import structlog
from celery import shared_task

from apps.api.core.config import settings
from apps.api.domains.ingestion.service import error_payload, to_payload
from packages.statement_ingest.errors import IngestError, MalformedInput
from packages.statement_ingest.pipeline import parse_statement

logger = structlog.get_logger(__name__)


def encode_content(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


@shared_task(bind=True, name="ingestion.parse_statement")
def parse_statement_task(
    self,
    content_b64: str,
    filename: str,
    sheet: Optional[str] = None,
) -> Dict[str, Any]:
    """Parse one statement; returns {"status": "success", ...} or a tagged error."""
    logger.info("parse_task_started", task_id=self.request.id, filename=filename)
    try:
        try:
            content = base64.b64decode(content_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedInput(f"Upload payload is not valid base64: {e}")

        options = settings.parse_options(sheet=sheet)
        result = parse_statement(content, filename, options)
    except IngestError as e:
        logger.info("parse_task_rejected", task_id=self.request.id, kind=e.kind)
        return error_payload(e)

    payload = to_payload(result)
    payload["status"] = "success"
    logger.info("parse_task_complete", task_id=self.request.id, count=payload["count"])
    return payload
