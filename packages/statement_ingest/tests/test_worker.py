import asyncio

import pytest

from packages.statement_ingest.errors import EmptyInput, UnsupportedFormat
from packages.statement_ingest.models import ParseResult
from packages.statement_ingest.worker import ParseWorkerPool

CSV = b"Date,Amount,Note\n2024-01-01,-5,Coffee\n2024-01-02,100,Refund\n"


def test_submit_returns_parse_result():
    with ParseWorkerPool(max_workers=2, use_threads=True) as pool:
        result = pool.submit(CSV, "statement.csv").result(timeout=30)

    assert isinstance(result, ParseResult)
    assert len(result) == 2


def test_submit_propagates_ingest_errors():
    with ParseWorkerPool(max_workers=1, use_threads=True) as pool:
        future = pool.submit(b"", "statement.csv")
        with pytest.raises(EmptyInput):
            future.result(timeout=30)


def test_async_parse():
    async def run(pool):
        return await asyncio.gather(
            pool.parse(CSV, "a.csv"),
            pool.parse(CSV, "b.csv"),
        )

    with ParseWorkerPool(max_workers=2, use_threads=True) as pool:
        first, second = asyncio.run(run(pool))

    # Independent calls share no state
    assert [t.id for t in first] == [t.id for t in second]


def test_async_parse_raises():
    pool = ParseWorkerPool(max_workers=1, use_threads=True)
    try:
        with pytest.raises(UnsupportedFormat):
            asyncio.run(pool.parse(b"data", "statement.pdf"))
    finally:
        pool.shutdown()


def test_process_pool_round_trip():
    with ParseWorkerPool(max_workers=1) as pool:
        result = pool.submit(CSV, "statement.csv").result(timeout=60)

    assert [t.note for t in result] == ["Coffee", "Refund"]


def test_shutdown_is_idempotent():
    pool = ParseWorkerPool(use_threads=True)
    pool.shutdown()
    pool.submit(CSV, "statement.csv").result(timeout=30)
    pool.shutdown()
    pool.shutdown()
