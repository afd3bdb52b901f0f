"""Tests for ingestion service helpers."""

import asyncio
from decimal import Decimal

import pytest

from apps.api.core.errors import PayloadTooLargeError
from apps.api.domains.ingestion import service
from packages.statement_ingest import EmptyInput, NoValidRows, ParseOptions, UnsupportedFormat
from packages.statement_ingest.pipeline import parse_statement
from packages.statement_ingest.worker import ParseWorkerPool


class TestValidateUpload:
    def test_accepts_supported_extensions(self):
        for name in ("a.csv", "b.TSV", "c.txt", "d.xlsx", "e.xls"):
            service.validate_upload(name, 10, 100)

    def test_rejects_unknown_extension(self):
        with pytest.raises(UnsupportedFormat):
            service.validate_upload("statement.pdf", 10, 100)

    def test_rejects_missing_extension(self):
        with pytest.raises(UnsupportedFormat):
            service.validate_upload("statement", 10, 100)

    def test_rejects_empty(self):
        with pytest.raises(EmptyInput):
            service.validate_upload("statement.csv", 0, 100)

    def test_rejects_oversized(self):
        with pytest.raises(PayloadTooLargeError):
            service.validate_upload("statement.csv", 101, 100)


def test_to_payload_uses_wire_names():
    content = b"Date,Amount,Currency\n2026-01-05,-4,THB\n"
    options = ParseOptions(reporting_currency="USD", rates={"THB": Decimal("0.25")})
    payload = service.to_payload(parse_statement(content, "s.csv", options))

    txn = payload["transactions"][0]
    assert txn["amount"] == -1.0
    assert txn["originalAmount"] == -4.0
    assert txn["originalCurrency"] == "THB"
    assert payload["count"] == 1
    assert payload["warnings"] == []


def test_error_payload_carries_kind_and_message():
    assert service.error_payload(NoValidRows()) == {
        "status": "error",
        "kind": "no_valid_rows",
        "detail": NoValidRows().message,
    }


def test_parse_upload_runs_in_pool():
    content = b"Date,Amount\n2026-01-01,-1\n2026-01-02,2\n"
    with ParseWorkerPool(max_workers=1, use_threads=True) as pool:
        response = asyncio.run(service.parse_upload(pool, content, "s.csv", ParseOptions()))

    assert response.count == 2
    assert [t.type for t in response.transactions] == ["expense", "income"]


def test_parse_upload_propagates_ingest_errors():
    with ParseWorkerPool(max_workers=1, use_threads=True) as pool:
        with pytest.raises(NoValidRows):
            asyncio.run(
                service.parse_upload(pool, b"Date,Amount\n2026-01-01,abc\n", "s.csv", ParseOptions())
            )


def test_parse_pool_is_shared_and_resettable(monkeypatch):
    monkeypatch.setattr(service, "_pool", None)
    first = service.get_parse_pool()
    assert service.get_parse_pool() is first
    service.shutdown_parse_pool()
    assert service._pool is None
