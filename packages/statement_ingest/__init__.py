"""
Statement Ingest

Bank/card statement decoding, schema inference and normalization into a
single signed-amount transaction model.
"""

__version__ = "0.1.0"

from .config import ParseOptions
from .errors import (
    DecodeError,
    EmptyInput,
    IngestError,
    MalformedInput,
    NoValidRows,
    SchemaInferenceError,
    UnsupportedFormat,
)
from .models import ParseResult, Transaction
from .pipeline import StatementParser, parse_statement
from .worker import ParseWorkerPool

__all__ = [
    "ParseOptions",
    "ParseResult",
    "Transaction",
    "StatementParser",
    "parse_statement",
    "ParseWorkerPool",
    "IngestError",
    "DecodeError",
    "UnsupportedFormat",
    "EmptyInput",
    "MalformedInput",
    "SchemaInferenceError",
    "NoValidRows",
]
