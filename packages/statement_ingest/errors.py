"""
Error taxonomy for statement ingestion.

Every terminal failure of a parse call is an ``IngestError`` carrying a stable
``kind`` tag, so callers can build their own user-facing message without
string-matching. Row-level problems never escape the pipeline: ``RowRejected``
is raised and caught inside the normalizer/assembler only.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for every terminal parse failure."""

    kind = "ingest_error"
    default_message = "Failed to parse file"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnsupportedFormat(IngestError):
    """The declared file extension has no decoder."""

    kind = "unsupported_format"
    default_message = "Unsupported file format. Please upload CSV or Excel."


class DecodeError(IngestError):
    """Bytes could not be turned into a cell grid."""

    kind = "decode_error"


class EmptyInput(DecodeError):
    kind = "empty_input"
    default_message = "The file is empty."


class MalformedInput(DecodeError):
    kind = "malformed_input"
    default_message = "The file could not be read. It may be corrupt."


class SchemaInferenceError(IngestError):
    """No column could be confidently identified as date or amount."""

    kind = "schema_inference"
    default_message = "Could not find date and amount columns. Check your file's columns."


class NoValidRows(IngestError):
    kind = "no_valid_rows"
    default_message = "No valid transactions found. Check file headers."


class RowRejected(Exception):
    """A single row could not be normalized. Never leaves the pipeline."""

    def __init__(self, row: int, reason: str):
        self.row = row
        self.reason = reason
        super().__init__(f"row {row}: {reason}")
