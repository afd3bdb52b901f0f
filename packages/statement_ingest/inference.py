"""
Schema Inference Engine - decides what each grid column means.

Two passes over the grid, both before any row is normalized:

1. Header detection and keyword classification. The header row is the row
   (within the scan window) with the most cells matching the multilingual
   keyword dictionary. Each header cell is classified by exact label first,
   then by ordered keyword prefixes.
2. Content sniffing and locale lock. Columns the header could not classify
   are sniffed for date/amount content, and the date order, decimal
   separator and amount sign convention are decided once from the whole
   column.

The result is a frozen SchemaInference.
"""

import re
from typing import Dict, List, Optional, Tuple

import structlog

from .config import ParseOptions
from .errors import EmptyInput, SchemaInferenceError
from .models import (
    AmountKind,
    Cell,
    ColumnRole,
    ColumnRoleMap,
    DateOrder,
    Direction,
    RawCellGrid,
    SchemaInference,
)
from .normalizer import (
    decimal_vote,
    is_date_like,
    is_number_like,
    parse_decimal,
    split_numeric_date,
)

logger = structlog.get_logger(__name__)

Classification = Tuple[ColumnRole, Optional[AmountKind]]

# Whole-label matches, checked before keywords. Covers the money-manager
# export whose labels overlap ("Сумма в валюте счета" is not the main amount).
EXACT_HEADERS: Dict[str, Classification] = {
    "дата и время": (ColumnRole.DATE, None),
    "дата": (ColumnRole.DATE, None),
    "сумма в валюте учета": (ColumnRole.AMOUNT, AmountKind.SIGNED),
    "валюта учета": (ColumnRole.CURRENCY, None),
    "сумма в валюте счета": (ColumnRole.ORIGINAL_AMOUNT, None),
    "валюта счета": (ColumnRole.ORIGINAL_CURRENCY, None),
    "сумма операции в валюте операции": (ColumnRole.ORIGINAL_AMOUNT, None),
    "сумма в валюте операции": (ColumnRole.ORIGINAL_AMOUNT, None),
    "валюта операции": (ColumnRole.ORIGINAL_CURRENCY, None),
    "счет": (ColumnRole.ACCOUNT, None),
    "категория": (ColumnRole.CATEGORY, None),
    "комментарий": (ColumnRole.NOTE, None),
    "теги": (ColumnRole.TAGS, None),
    # Transfer sheets
    "исходящий счет": (ColumnRole.ACCOUNT, None),
    "входящий счет": (ColumnRole.CATEGORY, None),
    "сумма в исходящей валюте счета": (ColumnRole.AMOUNT, AmountKind.SIGNED),
    "сумма во входящей валюте": (ColumnRole.ORIGINAL_AMOUNT, None),
    "валюта входящего счета": (ColumnRole.ORIGINAL_CURRENCY, None),
    "валюта исходящего счета": (ColumnRole.ORIGINAL_CURRENCY, None),
    "сумма во входящем счете": (ColumnRole.ORIGINAL_AMOUNT, None),
    "валюта входящая": (ColumnRole.ORIGINAL_CURRENCY, None),
    # Direction-label columns whose names would otherwise read as debit
    "debit credit": (ColumnRole.TYPE, None),
    "credit debit": (ColumnRole.TYPE, None),
    "dr cr": (ColumnRole.TYPE, None),
    "id": (ColumnRole.IGNORE, None),
    "ref": (ColumnRole.IGNORE, None),
}

# Ordered most-specific first; a keyword matches at the start of any word.
KEYWORDS: List[Tuple[ColumnRole, Optional[AmountKind], Tuple[str, ...]]] = [
    (ColumnRole.ORIGINAL_AMOUNT, None, (
        "original amount", "amount in original", "foreign amount", "исходная сумма",
        "ursprünglicher betrag", "montant d origine", "importe original",
    )),
    (ColumnRole.ORIGINAL_CURRENCY, None, (
        "original currency", "foreign currency", "исходная валюта", "originalwährung",
        "devise d origine", "moneda original",
    )),
    (ColumnRole.IGNORE, None, (
        "balance", "остаток", "баланс", "saldo", "solde", "kontostand", "running total",
    )),
    (ColumnRole.AMOUNT, AmountKind.DEBIT, (
        "debit", "withdrawal", "paid out", "money out", "outflow", "spent", "расход",
        "списание", "дебет", "soll", "lastschrift", "débit", "cargo",
    )),
    (ColumnRole.AMOUNT, AmountKind.CREDIT, (
        "credit", "deposit", "paid in", "money in", "inflow", "received", "приход",
        "поступление", "зачисление", "кредит", "haben", "gutschrift", "crédit", "abono",
    )),
    (ColumnRole.DATE, None, (
        "date", "дата", "datum", "fecha", "time", "время", "posted", "buchungstag",
        "valuta",
    )),
    (ColumnRole.CURRENCY, None, (
        "currency", "валюта", "währung", "devise", "moneda", "ccy",
    )),
    (ColumnRole.AMOUNT, AmountKind.SIGNED, (
        "amount", "сумма", "betrag", "montant", "importe", "value", "amt",
    )),
    (ColumnRole.TYPE, None, (
        "type", "тип", "dr cr", "d c", "direction", "вид операции", "income expense",
    )),
    (ColumnRole.CATEGORY, None, (
        "category", "категория", "kategorie", "catégorie", "categoría", "categoria",
    )),
    (ColumnRole.TAGS, None, (
        "tags", "tag", "теги", "метки", "labels",
    )),
    (ColumnRole.ACCOUNT, None, (
        "account", "счет", "счёт", "konto", "compte", "cuenta", "card", "карта",
        "wallet", "кошелек", "payment method",
    )),
    (ColumnRole.IGNORE, None, (
        "reference", "ref no", "transaction id", "номер", "status", "статус",
        "check number", "cheque",
    )),
    (ColumnRole.NOTE, None, (
        "note", "comment", "комментарий", "описание", "description", "desc", "memo",
        "details", "particulars", "narration", "payee", "merchant", "counterparty",
        "контрагент", "получатель", "назначение", "verwendungszweck", "libellé",
        "concepto", "beschreibung",
    )),
]

EXPENSE_HINTS = ("expense", "расход", "spending", "outgoing")
INCOME_HINTS = ("income", "доход", "incoming", "earnings")
TRANSFER_HINTS = ("transfer", "перевод")

_LABEL_PUNCT = re.compile(r"[_/\\\-.:#()\[\]*'\"«»,;]+")
_KEYWORD_PATTERNS = [
    (role, kind, re.compile(r"(?<!\w)(?:" + "|".join(re.escape(k) for k in words) + ")"))
    for role, kind, words in KEYWORDS
]


def normalize_label(value: Cell) -> str:
    """Lowercase, fold ё, turn punctuation into spaces, collapse whitespace."""
    if not isinstance(value, str):
        return ""
    label = value.lower().replace("ё", "е")
    label = _LABEL_PUNCT.sub(" ", label)
    return re.sub(r"\s+", " ", label).strip()


def classify_header(value: Cell) -> Optional[Classification]:
    """Classify one header cell by keyword; None when nothing matches."""
    label = normalize_label(value)
    if not label:
        return None
    if label in EXACT_HEADERS:
        return EXACT_HEADERS[label]
    for role, kind, pattern in _KEYWORD_PATTERNS:
        if pattern.search(label):
            return role, kind
    return None


def _looks_like_data(row: List[Cell]) -> bool:
    """A row carrying a date or a number is a data row, whatever its text says."""
    return any(is_date_like(cell) or is_number_like(cell) for cell in row)


def find_header_row(grid: RawCellGrid, scan_rows: int) -> int:
    """
    Index of the row maximizing keyword matches; ties go to the earliest row.

    Rows holding a date or a number never qualify, so a description such as
    "Card payment" in a headerless file is not read as a header. Returns -1
    when no row in the scan window qualifies.
    """
    best_row, best_score = -1, 0
    for i in range(min(scan_rows, grid.n_rows)):
        row = grid.row(i)
        if _looks_like_data(row):
            continue
        score = sum(1 for cell in row if isinstance(cell, str) and classify_header(cell))
        if score > best_score:
            best_row, best_score = i, score
    return best_row


def _non_empty(values: List[Cell]) -> List[Cell]:
    return [v for v in values if v is not None]


def _ratio(values: List[Cell], predicate) -> float:
    filled = _non_empty(values)
    if not filled:
        return 0.0
    return sum(1 for v in filled if predicate(v)) / len(filled)


def _has_negative(values: List[Cell], decimal_separator: str) -> bool:
    for v in values:
        amount = parse_decimal(v, decimal_separator)
        if amount is not None and amount < 0:
            return True
    return False


def _mutually_exclusive(left: List[Cell], right: List[Cell]) -> bool:
    """At most one of the two cells is filled in every row."""
    return all(a is None or b is None for a, b in zip(left, right))


def infer_date_order(values: List[Cell], default_day_first: bool = True) -> DateOrder:
    """
    Lock the day/month order for a whole date column.

    Any first component above 12 locks the column day-first; month-first
    needs a second component above 12 and no day-first evidence. Undecided columns fall back to the separator
    convention ("." is day-first) and then to ``default_day_first``.
    """
    day_first = month_first = year_first = ambiguous = 0
    separators = set()
    for v in values:
        if not isinstance(v, str):
            continue
        parts = split_numeric_date(v)
        if not parts:
            continue
        first, middle, _, sep = parts
        if len(first) == 4:
            year_first += 1
            continue
        separators.add(sep)
        if int(first) > 12:
            day_first += 1
        elif int(middle) > 12:
            month_first += 1
        else:
            ambiguous += 1

    if day_first:
        if month_first:
            logger.warning(
                "date_order_conflict", day_first=day_first, month_first=month_first
            )
        return DateOrder.DAY_FIRST
    if month_first:
        return DateOrder.MONTH_FIRST
    if ambiguous:
        if separators == {"."}:
            return DateOrder.DAY_FIRST
        return DateOrder.DAY_FIRST if default_day_first else DateOrder.MONTH_FIRST
    if year_first:
        return DateOrder.YEAR_FIRST
    return DateOrder.DAY_FIRST if default_day_first else DateOrder.MONTH_FIRST


def infer_decimal_separator(values: List[Cell]) -> str:
    """
    Lock the decimal separator for the amount columns.

    Comma wins only when the comma evidence outweighs the dot evidence;
    no evidence at all means dot.
    """
    comma = dot = 0
    for v in values:
        vote = decimal_vote(v)
        if vote == ",":
            comma += 1
        elif vote == ".":
            dot += 1
    if comma and dot:
        logger.warning("decimal_separator_conflict", comma=comma, dot=dot)
    return "," if comma > dot else "."


def direction_hint(*names: Optional[str]) -> Optional[Direction]:
    """Expense/income hint from a sheet or file name, None if absent or mixed."""
    text = " ".join(n.lower() for n in names if n)
    expense = any(h in text for h in EXPENSE_HINTS)
    income = any(h in text for h in INCOME_HINTS)
    if expense == income:
        return None
    return Direction.EXPENSE if expense else Direction.INCOME


def is_transfer_sheet(name: Optional[str]) -> bool:
    text = (name or "").lower()
    return any(h in text for h in TRANSFER_HINTS)


class SchemaInferenceEngine:
    """Builds a SchemaInference from a RawCellGrid."""

    def __init__(self, options: Optional[ParseOptions] = None):
        self.options = options or ParseOptions()

    def _classify_headers(
        self, grid: RawCellGrid, header_row: int
    ) -> Tuple[Dict[int, ColumnRole], Dict[int, AmountKind], List[int]]:
        roles: Dict[int, ColumnRole] = {}
        kinds: Dict[int, AmountKind] = {}
        unlabeled: List[int] = []
        header = grid.row(header_row) if header_row >= 0 else [None] * grid.n_columns

        for col, cell in enumerate(header):
            match = classify_header(cell)
            if match is None:
                unlabeled.append(col)
                continue
            role, kind = match
            roles[col] = role
            if kind is not None:
                kinds[col] = kind
        return roles, kinds, unlabeled

    @staticmethod
    def _dedupe(roles: Dict[int, ColumnRole], kinds: Dict[int, AmountKind]) -> None:
        """Left-most column keeps each role; amount keeps one signed or one debit+credit."""
        seen = set()
        for col in sorted(roles):
            role = roles[col]
            if role in (ColumnRole.AMOUNT, ColumnRole.IGNORE):
                continue
            if role in seen:
                roles[col] = ColumnRole.IGNORE
            seen.add(role)

        amount_cols = [c for c in sorted(roles) if roles[c] is ColumnRole.AMOUNT]
        signed = [c for c in amount_cols if kinds.get(c) is AmountKind.SIGNED]
        if signed:
            keep = {signed[0]}
        else:
            keep = set()
            for kind in (AmountKind.DEBIT, AmountKind.CREDIT):
                of_kind = [c for c in amount_cols if kinds.get(c) is kind]
                if of_kind:
                    keep.add(of_kind[0])
        for col in amount_cols:
            if col not in keep:
                roles[col] = ColumnRole.IGNORE
                kinds.pop(col, None)

    def _sniff_date(
        self, samples: Dict[int, List[Cell]], candidates: List[int]
    ) -> Optional[int]:
        threshold = self.options.sniff_threshold
        for col in candidates:
            if _ratio(samples[col], is_date_like) >= threshold:
                return col
        return None

    def _sniff_amount(
        self, samples: Dict[int, List[Cell]], candidates: List[int]
    ) -> Dict[int, AmountKind]:
        """
        Pick amount column(s) by content: a mixed-sign column first, then a
        debit/credit pair of row-exclusive columns, then the left-most
        numeric column. Position breaks ties.
        """
        threshold = self.options.sniff_threshold
        numeric = [
            col for col in candidates
            if _non_empty(samples[col]) and _ratio(samples[col], is_number_like) >= threshold
        ]
        if not numeric:
            return {}

        def _signed(col: int) -> bool:
            sep = infer_decimal_separator(samples[col])
            return _has_negative(samples[col], sep)

        for col in numeric:
            if _signed(col):
                return {col: AmountKind.SIGNED}

        for i, left in enumerate(numeric):
            for right in numeric[i + 1:]:
                if _mutually_exclusive(samples[left], samples[right]):
                    return {left: AmountKind.DEBIT, right: AmountKind.CREDIT}

        return {numeric[0]: AmountKind.SIGNED}

    def infer(self, grid: RawCellGrid) -> SchemaInference:
        """
        Infer column roles and the locale lock for ``grid``.

        Raises:
            SchemaInferenceError: no confident date or amount column.
        """
        opts = self.options
        header_row = find_header_row(grid, opts.header_scan_rows)
        data_start = header_row + 1
        if data_start >= grid.n_rows:
            raise EmptyInput("The file has a header row but no data rows.")

        roles, kinds, unlabeled = self._classify_headers(grid, header_row)
        self._dedupe(roles, kinds)

        sample_stop = data_start + opts.sniff_sample_rows
        samples = {col: grid.column(col, data_start, sample_stop) for col in range(grid.n_columns)}

        if ColumnRole.DATE not in roles.values():
            col = self._sniff_date(samples, unlabeled)
            if col is not None:
                roles[col] = ColumnRole.DATE
                unlabeled.remove(col)

        if ColumnRole.AMOUNT not in roles.values():
            sniffed = self._sniff_amount(samples, unlabeled)
            for col, kind in sniffed.items():
                roles[col] = ColumnRole.AMOUNT
                kinds[col] = kind
                unlabeled.remove(col)

        if header_row < 0 and ColumnRole.NOTE not in roles.values():
            for col in unlabeled:
                filled = _non_empty(samples[col])
                if filled and _ratio(
                    filled, lambda v: isinstance(v, str) and not is_number_like(v)
                ) >= opts.sniff_threshold:
                    roles[col] = ColumnRole.NOTE
                    unlabeled.remove(col)
                    break

        for col in unlabeled:
            roles[col] = ColumnRole.IGNORE

        role_map = ColumnRoleMap(roles)
        date_col = role_map.column_for(ColumnRole.DATE)
        amount_cols = role_map.columns_for(ColumnRole.AMOUNT)
        if date_col is None:
            raise SchemaInferenceError("Could not find a date column.")
        if not amount_cols:
            raise SchemaInferenceError("Could not find an amount column.")

        # Locale lock from the whole column, not just the sample
        date_values = grid.column(date_col, data_start)
        date_order = infer_date_order(date_values, opts.default_day_first)

        money_cols = amount_cols + role_map.columns_for(ColumnRole.ORIGINAL_AMOUNT)
        money_values = [v for col in money_cols for v in grid.column(col, data_start)]
        decimal_separator = infer_decimal_separator(money_values)

        amount_kinds = {col: kinds[col] for col in amount_cols}
        if any(k is not AmountKind.SIGNED for k in amount_kinds.values()):
            amount_signed = True
        else:
            amount_signed = _has_negative(
                grid.column(amount_cols[0], data_start), decimal_separator
            )

        schema = SchemaInference(
            header_row=header_row,
            roles=role_map,
            amount_kinds=amount_kinds,
            date_order=date_order,
            decimal_separator=decimal_separator,
            amount_signed=amount_signed,
            direction_hint=direction_hint(grid.sheet_name, grid.filename),
        )
        logger.info(
            "schema_inferred",
            header_row=header_row,
            roles={col: role.value for col, role in role_map.items()},
            date_order=date_order.value,
            decimal_separator=decimal_separator,
            amount_signed=amount_signed,
            direction_hint=schema.direction_hint.value if schema.direction_hint else None,
        )
        return schema
