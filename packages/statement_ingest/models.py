"""
Data model shared by the ingestion stages.

RawCellGrid -> SchemaInference (holding the ColumnRoleMap) -> Transaction.
Every object handed from one stage to the next is either frozen or owned by
a single parse call; nothing here is cached across calls.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import pandas as pd

Cell = Union[str, int, float, datetime, date, None]

DEFAULT_CATEGORY = "Other"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ColumnRole(str, Enum):
    """Semantic meaning of a grid column."""

    DATE = "date"
    AMOUNT = "amount"
    CURRENCY = "currency"
    CATEGORY = "category"
    ACCOUNT = "account"
    NOTE = "note"
    TAGS = "tags"
    TYPE = "type"
    ORIGINAL_AMOUNT = "originalAmount"
    ORIGINAL_CURRENCY = "originalCurrency"
    IGNORE = "ignore"


class AmountKind(str, Enum):
    """How an ``amount`` column encodes direction."""

    SIGNED = "signed"
    DEBIT = "debit"  # outflow, contributes negative
    CREDIT = "credit"  # inflow, contributes positive


class DateOrder(str, Enum):
    DAY_FIRST = "day_first"
    MONTH_FIRST = "month_first"
    YEAR_FIRST = "year_first"


class Direction(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


@dataclass
class RawCellGrid:
    """
    Generic 2-D grid decoded from one uploaded file.

    ``frame`` has positional integer columns, object dtype and ``None`` for
    empty cells. Spreadsheet cells keep their native type.
    """

    frame: pd.DataFrame
    sheet_name: Optional[str] = None
    filename: str = ""

    @property
    def n_rows(self) -> int:
        return len(self.frame.index)

    @property
    def n_columns(self) -> int:
        return len(self.frame.columns)

    @property
    def rows(self) -> List[List[Cell]]:
        return self.frame.values.tolist()

    def row(self, i: int) -> List[Cell]:
        return self.frame.iloc[i].tolist()

    def column(self, j: int, start: int = 0, stop: Optional[int] = None) -> List[Cell]:
        return self.frame.iloc[start:stop, j].tolist()


class ColumnRoleMap(Mapping):
    """Immutable mapping of column index -> ColumnRole."""

    def __init__(self, roles: Optional[Dict[int, ColumnRole]] = None):
        self._roles = dict(sorted((roles or {}).items()))

    def __getitem__(self, column: int) -> ColumnRole:
        return self._roles[column]

    def __iter__(self) -> Iterator[int]:
        return iter(self._roles)

    def __len__(self) -> int:
        return len(self._roles)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}: {v.value}" for k, v in self._roles.items())
        return f"ColumnRoleMap({{{inner}}})"

    def columns_for(self, role: ColumnRole) -> List[int]:
        return [col for col, r in self._roles.items() if r is role]

    def column_for(self, role: ColumnRole) -> Optional[int]:
        """Left-most column holding ``role``."""
        cols = self.columns_for(role)
        return cols[0] if cols else None


@dataclass(frozen=True)
class SchemaInference:
    """
    Frozen result of schema inference: column roles plus the locale lock.

    The normalizer applies these decisions uniformly to every row; it never
    re-decides date order or decimal separator per cell.
    """

    header_row: int
    roles: ColumnRoleMap
    amount_kinds: Mapping
    date_order: DateOrder = DateOrder.DAY_FIRST
    decimal_separator: str = "."
    amount_signed: bool = True
    direction_hint: Optional[Direction] = None

    @property
    def date_column(self) -> int:
        return self.roles.column_for(ColumnRole.DATE)

    @property
    def data_start(self) -> int:
        return self.header_row + 1


@dataclass(frozen=True)
class Transaction:
    """Canonical transaction record. Positive amount = income, negative = expense."""

    id: str
    date: str
    index: int
    amount: Decimal
    category: str = DEFAULT_CATEGORY
    account: str = ""
    note: str = ""
    tags: str = ""
    currency: Optional[str] = None
    original_amount: Optional[Decimal] = None
    original_currency: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Transaction id must be non-empty")
        if not _ISO_DATE.match(self.date):
            raise ValueError(f"Transaction date must be YYYY-MM-DD, got {self.date!r}")
        date.fromisoformat(self.date)
        if not self.amount.is_finite() or self.amount == 0:
            raise ValueError(f"Transaction amount must be finite and non-zero, got {self.amount}")

    @property
    def type(self) -> str:
        return Direction.INCOME.value if self.amount > 0 else Direction.EXPENSE.value

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict using the wire field names."""
        data = {
            "id": self.id,
            "date": self.date,
            "index": self.index,
            "amount": float(self.amount),
            "type": self.type,
            "category": self.category,
            "account": self.account,
            "note": self.note,
            "tags": self.tags,
        }
        if self.currency is not None:
            data["currency"] = self.currency
        if self.original_amount is not None:
            data["originalAmount"] = float(self.original_amount)
        if self.original_currency is not None:
            data["originalCurrency"] = self.original_currency
        return data


@dataclass(frozen=True)
class ParseResult:
    """
    Outcome of one successful parse call.

    ``transactions`` is in insertion (file) order, not display order.
    A workbook split into expense/income/transfer sheets lists every parsed
    sheet in ``sheet_names``; ``sheet_name`` and ``header_row`` describe the
    first one.
    """

    transactions: Tuple[Transaction, ...]
    skipped_rows: int = 0
    conflicts: int = 0
    sheet_name: Optional[str] = None
    header_row: int = 0
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    sheet_names: Tuple[str, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.transactions)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(self.transactions)

    def __getitem__(self, i: int) -> Transaction:
        return self.transactions[i]

    def to_records(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.transactions]
