"""Workbook Codec — decodes .xlsx bytes into the Workbook Model and back.

Decoding uses openpyxl with cached values only (no formula evaluation).
The first physical row of every sheet is its header row. Blank headers are
dropped together with their column so rows stay aligned with the headers;
sheets without any usable header are dropped from the workbook.
"""

import io
import logging
import zipfile
from typing import Any, Optional

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from backend.core.id_gen import generate_id
from backend.core.workbook import Field, Sheet, Workbook, is_empty

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class DecodeError(Exception):
    """Raised when bytes cannot be turned into a usable Workbook.

    ``reason`` is "corrupt" for structural failures and "no_usable_sheets"
    when the container parsed but nothing survived header filtering; the
    latter is a content problem, not a parse problem.
    """

    def __init__(self, message: str, reason: str = "corrupt", filename: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.filename = filename


def _header_name(value: Any) -> str:
    """String form of a header cell ("" for blank)."""
    if value is None:
        return ""
    return str(value)


def _usable_columns(header_cells: tuple) -> list[tuple[int, str]]:
    """(column index, header name) for every header that is not blank."""
    columns = []
    for i, value in enumerate(header_cells):
        name = _header_name(value)
        if name.strip():
            columns.append((i, name))
    return columns


def _extract_row_values(raw: tuple, columns: list[tuple[int, str]]) -> tuple:
    """Project a raw row onto the usable columns, trimming trailing empties."""
    values = [raw[i] if i < len(raw) else None for i, _ in columns]
    while values and is_empty(values[-1]):
        values.pop()
    return tuple(values)


def _parse_sheet(ws, source_id: str) -> Optional[Sheet]:
    """Parse one worksheet. Returns None when it has no usable header."""
    rows = list(ws.iter_rows(values_only=True))
    if not rows:
        logger.debug(f"Sheet '{ws.title}' is empty, dropped")
        return None

    columns = _usable_columns(rows[0])
    if not columns:
        logger.debug(f"Sheet '{ws.title}' has no usable headers, dropped")
        return None

    data = [_extract_row_values(raw, columns) for raw in rows[1:]]
    # Formatted-but-empty trailing rows are openpyxl artefacts, not data
    while data and not data[-1]:
        data.pop()

    return Sheet(
        name=ws.title,
        headers=tuple(Field(name) for _, name in columns),
        rows=tuple(data),
        source_id=source_id,
    )


def decode(
    content: bytes,
    workbook_id: Optional[str] = None,
    name: Optional[str] = None,
) -> Workbook:
    """Decode .xlsx bytes into a Workbook.

    Raises DecodeError for corrupt input or when zero usable sheets remain.
    """
    workbook_id = workbook_id or generate_id("wb_")
    label = f" '{name}'" if name else ""

    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as e:
        raise DecodeError(f"Could not read workbook{label}: {e}", filename=name) from e

    try:
        sheets = []
        for ws in wb.worksheets:
            sheet = _parse_sheet(ws, workbook_id)
            if sheet is not None:
                sheets.append(sheet)
    except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise DecodeError(f"Could not read workbook{label}: {e}", filename=name) from e
    finally:
        wb.close()

    if not sheets:
        raise DecodeError(
            f"No usable sheets found in workbook{label}",
            reason="no_usable_sheets",
            filename=name,
        )

    logger.info(
        f"Decoded workbook{label} ({workbook_id}): "
        f"{len(sheets)} sheet(s), {sum(len(s.rows) for s in sheets)} row(s)"
    )
    return Workbook(id=workbook_id, sheets=tuple(sheets), name=name)


def encode(workbook: Workbook) -> bytes:
    """Encode a Workbook as .xlsx bytes: one tab per sheet, headers in row 1."""
    if not workbook.sheets:
        raise ValueError("Cannot encode a workbook without sheets")

    wb = openpyxl.Workbook(write_only=True)
    for sheet in workbook.sheets:
        ws = wb.create_sheet(title=sheet.name)
        ws.append(sheet.field_names)
        for row in sheet.rows:
            ws.append([None if is_empty(v) else v for v in row])

    buffer = io.BytesIO()
    wb.save(buffer)
    wb.close()
    return buffer.getvalue()
