"""
Off-thread execution for statement parsing.

One parse call is one unit of work. Only the file bytes, file name and
options go in, and only the ParseResult (or the IngestError) comes out.
"""

import asyncio
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Optional

import structlog

from .config import ParseOptions
from .models import ParseResult
from .pipeline import parse_statement

logger = structlog.get_logger(__name__)


class ParseWorkerPool:
    """
    Executor-backed pool for parse calls.

    Uses processes by default since decoding and row normalization are
    CPU-bound; ``use_threads=True`` runs in a thread pool instead (tests,
    environments without fork).
    """

    def __init__(self, max_workers: Optional[int] = None, use_threads: bool = False):
        self.max_workers = max_workers
        self.use_threads = use_threads
        self._executor: Optional[Executor] = None

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            executor_cls = ThreadPoolExecutor if self.use_threads else ProcessPoolExecutor
            self._executor = executor_cls(max_workers=self.max_workers)
            logger.info(
                "parse_pool_started",
                workers=self.max_workers,
                kind="thread" if self.use_threads else "process",
            )
        return self._executor

    def submit(
        self, content: bytes, filename: str, options: Optional[ParseOptions] = None
    ) -> "Future[ParseResult]":
        return self.executor.submit(parse_statement, content, filename, options)

    async def parse(
        self, content: bytes, filename: str, options: Optional[ParseOptions] = None
    ) -> ParseResult:
        """Parse without blocking the event loop. Re-raises any IngestError."""
        return await asyncio.wrap_future(self.submit(content, filename, options))

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
            logger.info("parse_pool_stopped")

    def __enter__(self) -> "ParseWorkerPool":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
