"""
Record Assembler - normalized rows to the final Transaction sequence.

Rows keep file order. Each Transaction gets a content-derived id (stable
across re-uploads of the same file) and a per-date ordering index.
"""

import hashlib
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .models import DEFAULT_CATEGORY, Transaction
from .normalizer import NormalizedRow

logger = structlog.get_logger(__name__)

FINGERPRINT_LENGTH = 16


def _money(value: Optional[Decimal]) -> str:
    return f"{value if value is not None else Decimal(0):.2f}"


def generate_fingerprint(
    date: str,
    amount: Decimal,
    account: str = "",
    category: str = "",
    note: str = "",
    original_amount: Optional[Decimal] = None,
) -> str:
    """
    Deterministic SHA256 fingerprint of a transaction's content.

    Format: SHA256(date|amount|ACCOUNT|CATEGORY|NOTE|original_amount), with
    amounts at 2 decimal places and text trimmed and uppercased. Truncated to
    FINGERPRINT_LENGTH hex characters.
    """
    parts = [
        date,
        _money(amount),
        account.strip().upper(),
        category.strip().upper(),
        note.strip().upper(),
        _money(original_amount),
    ]
    raw_string = "|".join(parts)
    return hashlib.sha256(raw_string.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class RecordAssembler:
    """Builds Transactions from NormalizedRows. One instance per parse call."""

    def __init__(self):
        self._fingerprints: Dict[str, int] = defaultdict(int)
        self._dates: Dict[str, int] = defaultdict(int)

    def _unique_id(self, fingerprint: str) -> str:
        seen = self._fingerprints[fingerprint]
        self._fingerprints[fingerprint] += 1
        return fingerprint if seen == 0 else f"{fingerprint}_{seen}"

    def _next_index(self, date: str) -> int:
        index = self._dates[date]
        self._dates[date] += 1
        return index

    def build(self, row: NormalizedRow) -> Transaction:
        category = row.category or DEFAULT_CATEGORY
        fingerprint = generate_fingerprint(
            row.date,
            row.amount,
            account=row.account,
            category=category,
            note=row.note,
            original_amount=row.original_amount,
        )
        return Transaction(
            id=self._unique_id(fingerprint),
            date=row.date,
            index=self._next_index(row.date),
            amount=row.amount,
            category=category,
            account=row.account,
            note=row.note,
            tags=row.tags,
            currency=row.currency,
            original_amount=row.original_amount,
            original_currency=row.original_currency,
        )

    def assemble(self, rows: Iterable[NormalizedRow]) -> Tuple[Transaction, ...]:
        transactions: List[Transaction] = [self.build(row) for row in rows]
        duplicates = sum(n - 1 for n in self._fingerprints.values() if n > 1)
        if duplicates:
            logger.debug("duplicate_fingerprints", duplicates=duplicates)
        return tuple(transactions)
