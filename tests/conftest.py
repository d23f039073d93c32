"""Shared test helpers for the TemplateMapper test suite."""

import io
from typing import Any, Optional

import openpyxl

from backend.core.workbook import Workbook, make_sheet


def make_xlsx(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Build .xlsx bytes with openpyxl. Each sheet's first row is its header row."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    wb.close()
    return buffer.getvalue()


def make_workbook(
    sheets: dict[str, tuple[list[str], list[list[Any]]]],
    workbook_id: str = "wb_src",
    name: Optional[str] = None,
) -> Workbook:
    """Build an in-memory Workbook: {sheet name: (headers, rows)}."""
    return Workbook(
        id=workbook_id,
        sheets=tuple(
            make_sheet(sheet_name, headers, rows, source_id=workbook_id)
            for sheet_name, (headers, rows) in sheets.items()
        ),
        name=name,
    )


def make_template(sheets: dict[str, list[str]], workbook_id: str = "wb_tpl") -> Workbook:
    """Build a template Workbook: {sheet name: field names}, no rows."""
    return make_workbook(
        {name: (fields, []) for name, fields in sheets.items()},
        workbook_id=workbook_id,
        name="template.xlsx",
    )
