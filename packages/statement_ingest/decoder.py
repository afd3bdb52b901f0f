"""
Tabular Decoder - raw file bytes to a RawCellGrid.

Delimited text goes through pandas.read_csv with a sniffed delimiter and
every cell kept as text. Spreadsheets go through pandas.read_excel with
object dtype so numbers, dates and strings stay distinct; that native typing
feeds the locale disambiguation done later. Password-protected workbooks are
decrypted with msoffcrypto first.

`decode_sheets` returns one grid per expense/income/transfer sheet for
money-manager workbooks that split one export across several sheets.
"""

import io
from pathlib import Path
from typing import Dict, List, Optional, Union

import msoffcrypto
import pandas as pd
import structlog

from .config import ParseOptions
from .errors import EmptyInput, MalformedInput, UnsupportedFormat
from .inference import direction_hint, is_transfer_sheet
from .models import RawCellGrid

logger = structlog.get_logger(__name__)

TEXT_EXTENSIONS = (".csv", ".tsv", ".txt")
SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm", ".xls")
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS + SPREADSHEET_EXTENSIONS

# Tried in order; latin-1 never fails so it must stay last
ENCODINGS = ["utf-8-sig", "cp1251", "cp1252", "latin-1"]

DELIMITERS = [",", ";", "\t", "|"]

# OLE2 Compound Document magic bytes - legacy .xls and encrypted OOXML both use it
_OLE2_MAGIC = b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1"
_ZIP_MAGIC = b"PK\x03\x04"


def file_extension(filename: str) -> str:
    """Normalized extension from a file name or a bare extension ("csv", ".CSV")."""
    name = (filename or "").strip().lower()
    suffix = Path(name).suffix
    if suffix:
        return suffix
    if name and "." not in name:
        return "." + name
    return name


def _is_ole2(content: bytes) -> bool:
    return content[:8] == _OLE2_MAGIC


def decode_text(content: bytes) -> str:
    """Decode delimited-text bytes, trying the known bank-export encodings."""
    if content.startswith((b"\xff\xfe", b"\xfe\xff")):
        try:
            return content.decode("utf-16")
        except UnicodeDecodeError as e:
            raise MalformedInput(f"Could not decode UTF-16 text: {e}")

    if b"\x00" in content:
        raise MalformedInput("File contains binary data, not delimited text.")

    # Strict UTF-8 first: cp1251/cp1252 accept most byte sequences and would
    # otherwise mis-decode valid UTF-8.
    for encoding in ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue

    raise MalformedInput("Could not decode text file with any known encoding")


def _count_outside_quotes(line: str, delimiter: str) -> int:
    count = 0
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            count += 1
    return count


def sniff_delimiter(text: str, max_lines: int = 10) -> str:
    """
    Pick the delimiter from the first non-empty line.

    If that line holds none of the candidates (e.g. a lone title line), the
    next non-empty lines are tried. Ties resolve in DELIMITERS order.
    """
    seen = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        counts = {d: _count_outside_quotes(line, d) for d in DELIMITERS}
        best = max(DELIMITERS, key=lambda d: counts[d])
        if counts[best] > 0:
            return best
        seen += 1
        if seen >= max_lines:
            break
    return ","


def _clean_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Empty cells -> None, strip text, drop empty rows/columns, positional axes."""
    df = df.astype(object).where(pd.notna(df), None)

    def _clean(value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    df = df.apply(lambda col: col.map(_clean))
    df = df.dropna(axis=0, how="all").dropna(axis=1, how="all")
    df = df.reset_index(drop=True)
    df.columns = range(len(df.columns))
    return df.astype(object).where(pd.notna(df), None)


def read_delimited(content: bytes, filename: str = "") -> RawCellGrid:
    """Decode CSV/TSV bytes into a grid of text cells."""
    text = decode_text(content)
    if not text.strip():
        raise EmptyInput()

    delimiter = sniff_delimiter(text)
    lines = text.splitlines()
    # Upper bound on field count; surplus columns come back empty and are trimmed
    width = max(_count_outside_quotes(line, delimiter) for line in lines) + 1

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
        )
    except (pd.errors.ParserError, ValueError) as e:
        raise MalformedInput(f"Could not parse delimited text: {e}")

    df = _clean_frame(df)
    if df.empty:
        raise EmptyInput("The file has no rows.")

    logger.debug(
        "delimited_decoded", delimiter=delimiter, rows=len(df), columns=len(df.columns)
    )
    return RawCellGrid(frame=df, sheet_name=None, filename=filename)


def _open_workbook(content: bytes, password: Optional[str]) -> io.BytesIO:
    """Return a readable workbook stream, decrypting OLE2-wrapped OOXML if needed."""
    if not _is_ole2(content):
        return io.BytesIO(content)

    try:
        office_file = msoffcrypto.OfficeFile(io.BytesIO(content))
        encrypted = office_file.is_encrypted()
    except Exception as e:
        raise MalformedInput(f"Unrecognized spreadsheet container: {e}")

    if not encrypted:
        # Plain legacy .xls
        return io.BytesIO(content)

    if not password:
        raise MalformedInput("Password required to open this workbook.")

    decrypted = io.BytesIO()
    try:
        office_file.load_key(password=password)
        office_file.decrypt(decrypted)
    except Exception as e:
        msg = str(e).lower()
        if "password" in msg or "decrypt" in msg or "key" in msg:
            raise MalformedInput("Invalid password for this workbook.")
        raise MalformedInput(f"Failed to decrypt workbook: {e}")
    decrypted.seek(0)
    return decrypted


def _engine_for(stream: io.BytesIO) -> str:
    head = stream.read(8)
    stream.seek(0)
    if head[:4] == _ZIP_MAGIC:
        return "openpyxl"
    if head == _OLE2_MAGIC:
        return "xlrd"
    raise MalformedInput("File is not a recognized spreadsheet container.")


def select_sheet(
    sheets: Dict[str, pd.DataFrame], sheet: Optional[Union[str, int]] = None
) -> str:
    """
    Sheet selection policy: designated sheet, else the only sheet, else the
    sheet with the most non-empty rows (ties: first in workbook order).
    """
    names = list(sheets)
    if sheet is not None:
        if isinstance(sheet, int):
            if not 0 <= sheet < len(names):
                raise MalformedInput(f"Workbook has no sheet #{sheet}.")
            return names[sheet]
        if sheet not in sheets:
            raise MalformedInput(f"Workbook has no sheet named {sheet!r}.")
        return sheet

    if len(names) == 1:
        return names[0]

    def _filled(name: str) -> int:
        return int(sheets[name].notna().any(axis=1).sum())

    return max(names, key=_filled)


def statement_sheet_names(names: List[str]) -> List[str]:
    """Sheets named for one side of a money-manager export, in workbook order."""
    return [
        name for name in names
        if direction_hint(str(name)) is not None or is_transfer_sheet(str(name))
    ]


def read_workbook(content: bytes, password: Optional[str] = None) -> Dict[str, pd.DataFrame]:
    """Every sheet of an .xlsx/.xls workbook as a raw frame, in workbook order."""
    stream = _open_workbook(content, password)
    engine = _engine_for(stream)

    try:
        sheets = pd.read_excel(
            stream, sheet_name=None, header=None, dtype=object, engine=engine
        )
    except Exception as e:
        raise MalformedInput(f"Could not read spreadsheet: {e}")

    if not sheets:
        raise EmptyInput("The workbook has no sheets.")
    logger.debug("workbook_read", engine=engine, sheets=len(sheets))
    return sheets


def _sheet_grid(df: pd.DataFrame, name: str, filename: str) -> RawCellGrid:
    df = _clean_frame(df)
    logger.debug("spreadsheet_decoded", sheet=name, rows=len(df), columns=len(df.columns))
    return RawCellGrid(frame=df, sheet_name=str(name), filename=filename)


def read_spreadsheet(
    content: bytes,
    filename: str = "",
    sheet: Optional[Union[str, int]] = None,
    password: Optional[str] = None,
) -> RawCellGrid:
    """Decode .xlsx/.xls bytes into a grid of natively typed cells."""
    sheets = read_workbook(content, password)
    name = select_sheet(sheets, sheet)
    grid = _sheet_grid(sheets[name], name, filename)
    if grid.frame.empty:
        raise EmptyInput(f"Sheet {name!r} has no rows.")
    return grid


def read_statement_sheets(
    content: bytes, filename: str = "", password: Optional[str] = None
) -> List[RawCellGrid]:
    """
    Decode a workbook into one grid per statement sheet.

    When two or more sheets carry expense/income/transfer names, each
    non-empty one is returned in workbook order. Any other workbook falls back
    to the single-sheet policy of ``select_sheet``.
    """
    sheets = read_workbook(content, password)
    names = statement_sheet_names(list(sheets))
    if len(names) < 2:
        name = select_sheet(sheets)
        grid = _sheet_grid(sheets[name], name, filename)
        if grid.frame.empty:
            raise EmptyInput(f"Sheet {name!r} has no rows.")
        return [grid]

    grids = [_sheet_grid(sheets[name], name, filename) for name in names]
    grids = [g for g in grids if not g.frame.empty]
    if not grids:
        raise EmptyInput("The statement sheets have no rows.")
    return grids


def _check_upload(content: bytes, filename: str) -> str:
    ext = file_extension(filename)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(
            f"Unsupported file type {ext or '(none)'!s}. "
            f"Accepted: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    if not content or not content.strip():
        raise EmptyInput()
    return ext


def decode(
    content: bytes, filename: str, options: Optional[ParseOptions] = None
) -> RawCellGrid:
    """
    Decode one uploaded file into a RawCellGrid.

    The declared extension selects the strategy; content is not sniffed to
    override it.

    Raises:
        UnsupportedFormat: extension has no decoder.
        EmptyInput: zero bytes or no non-empty rows.
        MalformedInput: bytes are not valid text or a readable workbook.
    """
    options = options or ParseOptions()
    ext = _check_upload(content, filename)

    if ext in SPREADSHEET_EXTENSIONS:
        return read_spreadsheet(
            content, filename, sheet=options.sheet, password=options.password
        )
    return read_delimited(content, filename)


def decode_sheets(
    content: bytes, filename: str, options: Optional[ParseOptions] = None
) -> List[RawCellGrid]:
    """
    Like ``decode``, but a workbook split into expense/income/transfer sheets
    comes back as one grid per sheet. A designated sheet always wins.
    """
    options = options or ParseOptions()
    ext = _check_upload(content, filename)

    if ext in SPREADSHEET_EXTENSIONS and options.sheet is None:
        return read_statement_sheets(content, filename, password=options.password)
    return [decode(content, filename, options)]
