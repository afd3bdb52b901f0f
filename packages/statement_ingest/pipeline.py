"""
Statement ingestion pipeline.

decode -> infer schema -> normalize every row -> assemble. Each stage runs to
completion before the next starts; the frozen SchemaInference is decided from
the whole grid before any row is normalized. A money-manager workbook is
parsed sheet by sheet, each with its own schema, and assembled as one run.
"""

from typing import Callable, List, Optional, Tuple

import structlog

from .assembler import RecordAssembler
from .config import ParseOptions
from .decoder import decode_sheets
from .errors import EmptyInput, IngestError, NoValidRows, RowRejected, SchemaInferenceError
from .inference import SchemaInferenceEngine
from .models import ParseResult, RawCellGrid, SchemaInference
from .normalizer import FieldNormalizer, NormalizedRow

logger = structlog.get_logger(__name__)


class ProgressTracker:
    """Tracks progress for large file processing."""

    def __init__(self, total: int, callback: Optional[Callable[[int], None]] = None):
        self.total = total
        self.current = 0
        self.callback = callback
        self.last_percent = 0

    def update(self, increment: int = 1):
        """Update progress."""
        self.current += increment
        if self.total <= 0:
            return
        percent = int((self.current / self.total) * 100)

        if percent != self.last_percent and percent % 10 == 0:
            self.last_percent = percent
            if self.callback:
                self.callback(percent)
            else:
                logger.debug("parse_progress", percent=percent)

    def finish(self):
        """Mark as complete."""
        if self.callback and self.last_percent != 100:
            self.callback(100)


class StatementParser:
    """
    Parses one uploaded statement into a ParseResult.

    Holds no state beyond a single call; build a new parser per file.
    """

    def __init__(
        self,
        file_content: bytes,
        filename: str,
        options: Optional[ParseOptions] = None,
        progress_callback: Optional[Callable[[int], None]] = None,
    ):
        """
        Args:
            file_content: Raw file bytes
            filename: Declared file name; its extension selects the decoder
            options: Parse options (sheet, password, locale defaults, rates)
            progress_callback: Callback function(percent) for progress updates
        """
        self.file_content = file_content
        self.filename = filename
        self.options = options or ParseOptions()
        self.progress_callback = progress_callback

    def _normalize_rows(
        self, grid: RawCellGrid, schema: SchemaInference, progress: ProgressTracker
    ) -> Tuple[List[NormalizedRow], int]:
        normalizer = FieldNormalizer(schema, self.options)
        accepted: List[NormalizedRow] = []
        skipped = 0
        for offset, values in enumerate(grid.rows[schema.data_start:]):
            row_number = schema.data_start + offset
            try:
                accepted.append(normalizer.normalize(values, row_number))
            except RowRejected as e:
                skipped += 1
                logger.debug("row_rejected", sheet=grid.sheet_name, row=e.row, reason=e.reason)
            progress.update()
        return accepted, skipped

    def _infer_sheets(
        self, grids: List[RawCellGrid]
    ) -> Tuple[List[Tuple[RawCellGrid, SchemaInference]], List[str]]:
        """
        Infer a schema per grid. With several statement sheets, a sheet that
        cannot be read as a statement is skipped with a warning; the parse
        fails only when none can.
        """
        engine = SchemaInferenceEngine(self.options)
        if len(grids) == 1:
            return [(grids[0], engine.infer(grids[0]))], []

        plans: List[Tuple[RawCellGrid, SchemaInference]] = []
        notices: List[str] = []
        first_error: Optional[IngestError] = None
        for grid in grids:
            try:
                plans.append((grid, engine.infer(grid)))
            except (EmptyInput, SchemaInferenceError) as e:
                logger.warning("sheet_skipped", sheet=grid.sheet_name, kind=e.kind)
                notices.append(f"Sheet {grid.sheet_name!r} skipped: {e.message}")
                first_error = first_error or e
        if not plans:
            raise first_error
        return plans, notices

    @staticmethod
    def _warnings(rows: List[NormalizedRow]) -> List[str]:
        unconverted = sorted({r.unconverted_currency for r in rows if r.unconverted_currency})
        if not unconverted:
            return []
        return [
            f"No conversion rate for {', '.join(unconverted)}; "
            "amounts in these currencies were left unconverted."
        ]

    def parse(self) -> ParseResult:
        """
        Run the full pipeline.

        Raises:
            IngestError: any terminal failure (format, empty, malformed,
                schema inference, no valid rows).
        """
        grids = decode_sheets(self.file_content, self.filename, self.options)
        logger.info(
            "statement_decoded",
            filename=self.filename,
            sheets=[g.sheet_name for g in grids],
            rows=sum(g.n_rows for g in grids),
        )

        plans, notices = self._infer_sheets(grids)
        progress = ProgressTracker(
            sum(grid.n_rows - schema.data_start for grid, schema in plans),
            self.progress_callback,
        )
        rows: List[NormalizedRow] = []
        skipped = 0
        for grid, schema in plans:
            sheet_rows, sheet_skipped = self._normalize_rows(grid, schema, progress)
            rows.extend(sheet_rows)
            skipped += sheet_skipped
        progress.finish()

        if not rows:
            logger.warning("no_valid_rows", filename=self.filename, skipped=skipped)
            raise NoValidRows()

        # One assembler over every sheet keeps ids and per-date indexes unique
        transactions = RecordAssembler().assemble(rows)
        conflicts = sum(1 for r in rows if r.conflict)
        warnings = notices + self._warnings(rows)
        first_grid, first_schema = plans[0]

        logger.info(
            "statement_parsed",
            filename=self.filename,
            transactions=len(transactions),
            skipped=skipped,
            conflicts=conflicts,
            header_row=first_schema.header_row,
        )
        return ParseResult(
            transactions=transactions,
            skipped_rows=skipped,
            conflicts=conflicts,
            sheet_name=first_grid.sheet_name,
            header_row=first_schema.header_row,
            warnings=tuple(warnings),
            sheet_names=tuple(g.sheet_name for g, _ in plans if g.sheet_name),
        )


def parse_statement(
    file_content: bytes,
    filename: str,
    options: Optional[ParseOptions] = None,
    progress_callback: Optional[Callable[[int], None]] = None,
) -> ParseResult:
    """
    Convenience function to parse a statement.

    Args:
        file_content: Raw file bytes
        filename: Declared file name (".csv", ".xlsx", ".xls", ...)
        options: Parse options
        progress_callback: Callback for progress updates

    Returns:
        ParseResult with transactions in file order
    """
    parser = StatementParser(
        file_content=file_content,
        filename=filename,
        options=options,
        progress_callback=progress_callback,
    )
    return parser.parse()
