"""
Field Normalizer - raw cells to canonical typed values.

Cell-level parsers (dates, decimals, type labels) live here and are shared
with schema inference, which uses them to gather locale evidence. The
FieldNormalizer itself never decides a locale: it applies the frozen
SchemaInference to every row the same way.
"""

import numbers
import re
import warnings
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Tuple

import pandas as pd
import structlog

from .config import ParseOptions
from .errors import RowRejected
from .models import AmountKind, Cell, ColumnRole, DateOrder, Direction, SchemaInference

logger = structlog.get_logger(__name__)

# 01.03.2024, 3/1/24, 2024-03-01, optionally followed by a time part
_NUMERIC_DATE = re.compile(
    r"^(\d{1,4})([./\-])(\d{1,2})\2(\d{1,4})(?:(?:[T\s,]+|$).*)?$"
)
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_YEAR_TOKEN = re.compile(r"\b\d{4}\b")
_HAS_ALPHA = re.compile(r"[^\W\d_]")

_EXCEL_EPOCH = datetime(1899, 12, 30)
_EXCEL_MAX_SERIAL = 2958465  # 9999-12-31

_CURRENCY_SYMBOLS = re.compile(r"[$€£¥₹₽₴₸฿₩₪₫₺₦₱¢]")
_LEADING_CODE = re.compile(r"^[^\W\d_]{1,4}\.?(?=[\d(+\-])")
_TRAILING_CODE = re.compile(r"(?<=[\d)\-])[^\W\d_]{1,4}\.?$")
_DRCR_SUFFIX = re.compile(r"(?i)(?<=[\d)\s])(dr|cr)\.?$")
_SPACES = re.compile(r"[\s'\u2019`]")
_DIGITS_AND_SEPARATORS = re.compile(r"^[\d.,]*\d[\d.,]*$")

_CENT = Decimal("0.01")

INCOME_STEMS = ("income", "credit", "deposit", "refund", "доход", "приход", "зачисл", "поступл", "возврат")
EXPENSE_STEMS = ("expense", "debit", "withdraw", "purchase", "payment", "расход", "списан", "покупк", "оплат")
INCOME_TOKENS = {"cr", "c", "in", "+"}
EXPENSE_TOKENS = {"dr", "d", "out", "-"}


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _is_number(value: Cell) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _expand_year(year: str) -> int:
    y = int(year)
    if len(year) == 2:
        # Same pivot as strptime's %y
        return 2000 + y if y < 69 else 1900 + y
    return y


def split_numeric_date(text: str) -> Optional[Tuple[str, str, str, str]]:
    """Split "13.01.2024 10:00" into ("13", "01", "2024", "."), or None."""
    m = _NUMERIC_DATE.match(text.strip())
    if not m:
        return None
    first, sep, middle, last = m.group(1), m.group(2), m.group(3), m.group(4)
    if len(first) == 4:
        if len(last) > 2:
            return None
    elif len(first) > 2 or len(last) not in (2, 4):
        return None
    return first, middle, last, sep


def _safe_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _parse_textual_date(text: str, order: DateOrder) -> Optional[str]:
    # "7 Feb 2026, 17:13" / "Feb 7, 2026"; a 4-digit year keeps pandas from
    # inventing the current year for bare month names.
    if not (_HAS_ALPHA.search(text) and _YEAR_TOKEN.search(text)):
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(
                text, dayfirst=order is DateOrder.DAY_FIRST, errors="coerce"
            )
        except (ValueError, TypeError, OverflowError):
            return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date().isoformat()


def parse_date(value: Cell, order: DateOrder = DateOrder.DAY_FIRST) -> Optional[str]:
    """
    Normalize one date cell to YYYY-MM-DD under a fixed date order.

    Native spreadsheet dates pass through, numbers are read as Excel serial
    days. Returns None when the cell is not a date.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if pd.isna(value):
            return None
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if _is_number(value):
        if value != value or not 1 <= value <= _EXCEL_MAX_SERIAL:
            return None
        return (_EXCEL_EPOCH + timedelta(days=int(value))).date().isoformat()

    text = str(value).strip()
    if not text:
        return None

    parts = split_numeric_date(text)
    if parts:
        first, middle, last, _ = parts
        if len(first) == 4:
            return _safe_iso(int(first), int(middle), int(last))
        year = _expand_year(last)
        if order is DateOrder.MONTH_FIRST:
            return _safe_iso(year, int(first), int(middle))
        return _safe_iso(year, int(middle), int(first))

    m = _COMPACT_DATE.match(text)
    if m:
        return _safe_iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    return _parse_textual_date(text, order)


def is_date_like(value: Cell) -> bool:
    """True if the cell is a date under some order. Bare numbers never are."""
    if value is None or _is_number(value):
        return False
    if isinstance(value, (datetime, date)):
        return not pd.isna(value)
    return (
        parse_date(value, DateOrder.DAY_FIRST) is not None
        or parse_date(value, DateOrder.MONTH_FIRST) is not None
    )


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------


def _strip_number(text: str) -> Tuple[Optional[str], bool, Optional[Direction]]:
    """
    Strip currency marks and sign notation from an amount string.

    Returns (digits-and-separators, negative, dr/cr direction). The first
    element is None when what is left is not a number.
    """
    s = text.strip().replace("−", "-")
    direction = None

    m = _DRCR_SUFFIX.search(s)
    if m:
        direction = Direction.EXPENSE if m.group(1).lower() == "dr" else Direction.INCOME
        s = s[: m.start()]

    s = _SPACES.sub("", s)
    s = _CURRENCY_SYMBOLS.sub("", s)
    s = _LEADING_CODE.sub("", s)
    s = _TRAILING_CODE.sub("", s)

    negative = False
    if s.startswith("-(") and s.endswith(")"):
        s = s[2:-1]
        negative = True
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1]
        negative = not negative
    if s.startswith(("+", "-")):
        negative = negative or s[0] == "-"
        s = s[1:]
    if s.endswith("-"):
        negative = True
        s = s[:-1]

    # Currency code between sign and digits: "-USD 5.00"
    s = _LEADING_CODE.sub("", s)
    s = _CURRENCY_SYMBOLS.sub("", s)

    if not _DIGITS_AND_SEPARATORS.match(s):
        return None, negative, direction
    return s, negative, direction


def parse_decimal(value: Cell, decimal_separator: str = ".") -> Optional[Decimal]:
    """
    Parse one amount cell under a fixed decimal separator.

    The other separator is treated as a thousands separator. Parenthesized,
    trailing-minus and DR-suffixed amounts are negative.
    """
    if value is None or isinstance(value, bool):
        return None

    if _is_number(value):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(str(value))

    if isinstance(value, (datetime, date)):
        return None

    digits, negative, direction = _strip_number(str(value))
    if digits is None:
        return None

    thousands = "." if decimal_separator == "," else ","
    if digits.count(decimal_separator) > 1:
        return None
    if thousands in digits.split(decimal_separator)[-1] and decimal_separator in digits:
        # Thousands separator to the right of the decimal mark
        return None
    digits = digits.replace(thousands, "").replace(decimal_separator, ".")

    try:
        amount = Decimal(digits)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None

    if negative:
        amount = -amount
    if direction is Direction.EXPENSE:
        amount = -abs(amount)
    elif direction is Direction.INCOME:
        amount = abs(amount)
    return amount


def is_number_like(value: Cell) -> bool:
    """True if the cell is a number under either decimal convention."""
    if _is_number(value):
        return value == value
    if not isinstance(value, str) or is_date_like(value):
        return False
    return parse_decimal(value, ".") is not None or parse_decimal(value, ",") is not None


def decimal_vote(value: Cell) -> Optional[str]:
    """
    Evidence for the decimal separator carried by one amount cell.

    With both separators present the rightmost one is the decimal mark. A
    lone separator followed by other than exactly three digits is a decimal
    mark; a repeated separator is a thousands separator. Anything else is
    ambiguous (None).
    """
    if not isinstance(value, str):
        return None
    digits, _, _ = _strip_number(value)
    if not digits:
        return None

    has_comma = "," in digits
    has_dot = "." in digits
    if has_comma and has_dot:
        return "," if digits.rfind(",") > digits.rfind(".") else "."
    for sep, other in ((",", "."), (".", ",")):
        if sep in digits:
            if digits.count(sep) > 1:
                return other
            if len(digits.rsplit(sep, 1)[1]) != 3:
                return sep
    return None


# ---------------------------------------------------------------------------
# Labels and text
# ---------------------------------------------------------------------------


def parse_direction(value: Cell) -> Optional[Direction]:
    """Resolve a transaction-type label to a direction; unknown labels -> None."""
    if value is None or _is_number(value):
        return None
    label = str(value).strip().lower()
    if not label:
        return None
    if label in INCOME_TOKENS:
        return Direction.INCOME
    if label in EXPENSE_TOKENS:
        return Direction.EXPENSE
    if label.startswith(INCOME_STEMS):
        return Direction.INCOME
    if label.startswith(EXPENSE_STEMS):
        return Direction.EXPENSE
    return None


def clean_text(value: Cell) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return re.sub(r"\s+", " ", str(value)).strip()


def clean_tags(value: Cell) -> str:
    tags = [t.strip() for t in re.split(r"[,;]", clean_text(value))]
    return ", ".join(t for t in tags if t)


def clean_currency(value: Cell) -> Optional[str]:
    code = clean_text(value).upper()
    return code or None


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedRow:
    """Typed field values of one accepted row."""

    row: int
    date: str
    amount: Decimal
    category: str = ""
    account: str = ""
    note: str = ""
    tags: str = ""
    currency: Optional[str] = None
    original_amount: Optional[Decimal] = None
    original_currency: Optional[str] = None
    conflict: bool = False
    unconverted_currency: Optional[str] = None


class FieldNormalizer:
    """Applies a frozen SchemaInference to raw rows."""

    def __init__(self, schema: SchemaInference, options: Optional[ParseOptions] = None):
        self.schema = schema
        self.options = options or ParseOptions()
        roles = schema.roles
        self._date_col = roles.column_for(ColumnRole.DATE)
        self._amount_cols = roles.columns_for(ColumnRole.AMOUNT)
        self._type_col = roles.column_for(ColumnRole.TYPE)
        self._text_cols = {
            "category": roles.column_for(ColumnRole.CATEGORY),
            "account": roles.column_for(ColumnRole.ACCOUNT),
            "note": roles.column_for(ColumnRole.NOTE),
        }
        self._tags_col = roles.column_for(ColumnRole.TAGS)
        self._currency_col = roles.column_for(ColumnRole.CURRENCY)
        self._orig_amount_col = roles.column_for(ColumnRole.ORIGINAL_AMOUNT)
        self._orig_currency_col = roles.column_for(ColumnRole.ORIGINAL_CURRENCY)

    @staticmethod
    def _cell(values: List[Cell], col: Optional[int]) -> Cell:
        if col is None or col >= len(values):
            return None
        return values[col]

    def _amount(self, values: List[Cell], row: int) -> Decimal:
        sep = self.schema.decimal_separator
        kinds = self.schema.amount_kinds

        if len(self._amount_cols) == 1 and kinds.get(self._amount_cols[0]) is AmountKind.SIGNED:
            amount = parse_decimal(self._cell(values, self._amount_cols[0]), sep)
            if amount is None:
                raise RowRejected(row, "amount is not a number")
            return amount

        # Debit/credit merge: debit contributes negative, credit positive
        total = None
        for col in self._amount_cols:
            value = parse_decimal(self._cell(values, col), sep)
            if value is None:
                continue
            signed = -abs(value) if kinds.get(col) is AmountKind.DEBIT else abs(value)
            total = signed if total is None else total + signed
        if total is None:
            raise RowRejected(row, "no debit or credit amount")
        return total

    def _resolve_sign(self, amount: Decimal, values: List[Cell]) -> Tuple[Decimal, bool]:
        """Apply the type label / direction hint; returns (amount, conflict)."""
        label = parse_direction(self._cell(values, self._type_col))

        if not self.schema.amount_signed:
            direction = label or self.schema.direction_hint
            if direction is Direction.EXPENSE:
                return -abs(amount), False
            if direction is Direction.INCOME:
                return abs(amount), False
            return amount, False

        # Signed source: numeric sign wins, disagreement is only counted
        if label is None or amount == 0:
            return amount, False
        disagrees = (label is Direction.INCOME) != (amount > 0)
        return amount, disagrees

    def _currency_fields(
        self, amount: Decimal, values: List[Cell]
    ) -> Tuple[Decimal, Optional[str], Optional[Decimal], Optional[str], Optional[str]]:
        sep = self.schema.decimal_separator
        currency = clean_currency(self._cell(values, self._currency_col))
        original_amount = parse_decimal(self._cell(values, self._orig_amount_col), sep)
        original_currency = clean_currency(self._cell(values, self._orig_currency_col))

        if original_amount is not None and original_amount != 0:
            # Keep the original figure on the same side as the reporting amount
            original_amount = abs(original_amount) if amount > 0 else -abs(original_amount)
            same_currency = original_currency is None or original_currency == currency
            if abs(amount - original_amount) < _CENT and same_currency:
                original_amount, original_currency = None, None
        else:
            original_amount = None
            if self._orig_amount_col is not None:
                original_currency = None

        unconverted = None
        reporting = (self.options.reporting_currency or "").upper() or None
        if reporting and currency and currency != reporting:
            rate = self.options.rate_for(currency)
            if rate is None:
                unconverted = currency
            else:
                if original_amount is None:
                    original_amount, original_currency = amount, currency
                amount = (amount * rate).quantize(_CENT, rounding=ROUND_HALF_UP)
                currency = reporting

        return amount, currency, original_amount, original_currency, unconverted

    def normalize(self, values: List[Cell], row: int) -> NormalizedRow:
        """
        Normalize one raw row.

        Raises:
            RowRejected: date or amount cannot be normalized, or the amount is zero.
        """
        iso_date = parse_date(self._cell(values, self._date_col), self.schema.date_order)
        if iso_date is None:
            raise RowRejected(row, "date is not parseable")

        amount = self._amount(values, row)
        amount, conflict = self._resolve_sign(amount, values)
        amount, currency, original_amount, original_currency, unconverted = (
            self._currency_fields(amount, values)
        )
        if amount == 0:
            raise RowRejected(row, "amount is zero")

        return NormalizedRow(
            row=row,
            date=iso_date,
            amount=amount,
            category=clean_text(self._cell(values, self._text_cols["category"])),
            account=clean_text(self._cell(values, self._text_cols["account"])),
            note=clean_text(self._cell(values, self._text_cols["note"])),
            tags=clean_tags(self._cell(values, self._tags_col)),
            currency=currency,
            original_amount=original_amount,
            original_currency=original_currency,
            conflict=conflict,
            unconverted_currency=unconverted,
        )
