from io import BytesIO

import openpyxl
import pytest


@pytest.fixture
def make_xlsx():
    """Build .xlsx bytes from {sheet_title: [row, ...]} (insertion order = sheet order)."""

    def _make(sheets):
        wb = openpyxl.Workbook()
        wb.remove(wb.active)
        for title, rows in sheets.items():
            ws = wb.create_sheet(title=title)
            for row in rows:
                ws.append(row)
        buffer = BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    return _make
