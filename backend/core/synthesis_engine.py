"""Synthesis Engine — builds the output workbook from a finalized mapping.

Two generation modes:

PER_SHEET (positional, single primary source):
    One output sheet per mapped template sheet. Rows come from the primary
    source sheet (the sheet of the first mapped template field, in header
    order). Fields mapped to other sheets are read at the same row ordinal;
    there is no join key. Missing cells render empty.

COLUMNAR_MERGE (sparse aggregation across files):
    Every mapped column is compacted independently: non-empty values are
    collected from each selected source file in order, then the columns are
    re-aligned by position into one flat sheet. Compacted rows do not
    correspond to any particular source row.

The engine is pure: it reads immutable workbooks and a mapping snapshot and
returns a new Workbook (or encoded bytes via ``generate``). No I/O.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Any, Mapping, Optional

from backend.core.config import settings
from backend.core.id_gen import generate_id
from backend.core.workbook import (
    Field,
    Sheet,
    SourceKey,
    TemplateKey,
    Workbook,
    is_empty,
)
from backend.core.workbook_codec import XLSX_MEDIA_TYPE, encode

logger = logging.getLogger(__name__)


class GenerationMode(str, Enum):
    PER_SHEET = "per_sheet"
    COLUMNAR_MERGE = "columnar_merge"


class SynthesisError(Exception):
    """Base class for generation failures reported back to the user."""


class NoMappingError(SynthesisError):
    """Generation was requested with no usable mapping entries."""


class EmptyResultError(SynthesisError):
    """Generation produced nothing worth emitting (no sheets / no rows)."""


class SynthesisLimitError(SynthesisError):
    """Source data exceeds the configured row ceiling."""


@dataclass
class GeneratedArtifact:
    """Encoded output workbook plus a few numbers for the caller."""
    filename: str
    content: bytes
    media_type: str = XLSX_MEDIA_TYPE
    sheet_count: int = 0
    row_count: int = 0


def live_entries(
    template: Workbook,
    mapping: Mapping[TemplateKey, SourceKey],
) -> list[tuple[TemplateKey, SourceKey]]:
    """Mapping entries whose template key still exists, in mapping order."""
    valid = {key for sheet in template.sheets for key in sheet.template_keys()}
    return [(k, v) for k, v in mapping.items() if k in valid]


def resolve_source_sheet(key: SourceKey, sources: list[Workbook]) -> Optional[Sheet]:
    """Find the sheet a source key refers to.

    Scoped keys look only in their own workbook; unscoped keys take the first
    source holding a sheet of that name.
    """
    if key.source_id is not None:
        for wb in sources:
            if wb.id == key.source_id:
                return wb.sheet(key.sheet)
        return None
    for wb in sources:
        sheet = wb.sheet(key.sheet)
        if sheet is not None:
            return sheet
    return None


def check_row_limit(sources: list[Workbook], max_rows: Optional[int]) -> None:
    if max_rows is None:
        return
    total = sum(wb.row_count for wb in sources)
    if total > max_rows:
        raise SynthesisLimitError(
            f"Source data has {total} rows, above the limit of {max_rows}"
        )


# ---------------------------------------------------------------------------
# PER_SHEET
# ---------------------------------------------------------------------------

def _synthesize_template_sheet(
    template_sheet: Sheet,
    sources: list[Workbook],
    mapping: Mapping[TemplateKey, SourceKey],
) -> Optional[Sheet]:
    """Build one output sheet, or None when the template sheet is skipped."""
    keys = template_sheet.template_keys()
    if not any(key in mapping for key in keys):
        return None

    primary: Optional[Sheet] = None
    columns: list[Optional[tuple[Sheet, int]]] = []
    for key in keys:
        source_key = mapping.get(key)
        if source_key is None:
            columns.append(None)
            continue
        sheet = resolve_source_sheet(source_key, sources)
        if sheet is None:
            logger.warning(f"Source sheet for {source_key} not found, '{key}' left empty")
            columns.append(None)
            continue
        if primary is None:
            primary = sheet
        index = sheet.column_index(source_key.field)
        if index is None:
            logger.warning(f"Source field {source_key} not found, '{key}' left empty")
            columns.append(None)
            continue
        columns.append((sheet, index))

    if primary is None:
        return None

    rows = []
    for row_index in range(len(primary.rows)):
        rows.append(tuple(
            None if column is None else column[0].cell(row_index, column[1])
            for column in columns
        ))

    logger.debug(
        f"Template sheet '{template_sheet.name}': {len(rows)} row(s) "
        f"from primary source sheet '{primary.name}'"
    )
    return Sheet(
        name=template_sheet.name,
        headers=tuple(Field(key.field) for key in keys),
        rows=tuple(rows),
    )


def synthesize_per_sheet(
    template: Workbook,
    sources: list[Workbook],
    mapping: Mapping[TemplateKey, SourceKey],
) -> Workbook:
    """Positional generation: one output sheet per mapped template sheet."""
    if not live_entries(template, mapping):
        raise NoMappingError("Please map at least one field before generating")

    sheets = []
    for template_sheet in template.sheets:
        sheet = _synthesize_template_sheet(template_sheet, sources, mapping)
        if sheet is None:
            logger.debug(f"Template sheet '{template_sheet.name}' has no mapping, skipped")
            continue
        sheets.append(sheet)

    if not sheets:
        raise EmptyResultError("No template sheet could be generated from the mapping")

    return Workbook(id=generate_id("out_"), sheets=tuple(sheets))


# ---------------------------------------------------------------------------
# COLUMNAR_MERGE
# ---------------------------------------------------------------------------

def build_column_buffer(source_key: SourceKey, sources: list[Workbook]) -> list[Any]:
    """Non-empty values of one source column across all files, in order.

    Every file holding a sheet with the key's name contributes; the key's
    source scope does not restrict this mode.
    """
    buffer = []
    for wb in sources:
        sheet = wb.sheet(source_key.sheet)
        if sheet is None:
            continue
        index = sheet.column_index(source_key.field)
        if index is None:
            continue
        buffer.extend(v for v in sheet.column_values(index) if not is_empty(v))
    return buffer


def synthesize_columnar(
    template: Workbook,
    sources: list[Workbook],
    mapping: Mapping[TemplateKey, SourceKey],
    sheet_name: Optional[str] = None,
) -> Workbook:
    """Columnar merge: compact each mapped column, then re-align by position."""
    entries = live_entries(template, mapping)
    if not entries:
        raise NoMappingError("Please map at least one field before generating")

    buffers = [build_column_buffer(source_key, sources) for _, source_key in entries]
    max_length = max((len(b) for b in buffers), default=0)

    rows = []
    for i in range(max_length):
        row = tuple(buffer[i] if i < len(buffer) else None for buffer in buffers)
        if all(is_empty(v) for v in row):
            continue
        rows.append(row)

    if not rows:
        raise EmptyResultError("No data found in the mapped source columns")

    logger.debug(f"Columnar merge: {len(entries)} column(s), {len(rows)} row(s)")
    sheet = Sheet(
        name=sheet_name or settings.merged_sheet_name,
        headers=tuple(Field(key.field) for key, _ in entries),
        rows=tuple(rows),
    )
    return Workbook(id=generate_id("out_"), sheets=(sheet,))


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def synthesize(
    template: Workbook,
    sources: list[Workbook],
    mapping: Mapping[TemplateKey, SourceKey],
    mode: GenerationMode = GenerationMode.PER_SHEET,
    max_rows: Optional[int] = None,
) -> Workbook:
    """Produce the output Workbook for ``mode``.

    Raises NoMappingError, SynthesisLimitError or EmptyResultError.
    """
    if not sources:
        raise SynthesisError("No source workbook to generate from")
    if not live_entries(template, mapping):
        raise NoMappingError("Please map at least one field before generating")
    check_row_limit(sources, max_rows)

    if mode == GenerationMode.COLUMNAR_MERGE:
        return synthesize_columnar(template, sources, mapping)
    return synthesize_per_sheet(template, sources, mapping)


def output_filename(source_names: list[Optional[str]]) -> str:
    """``<first source base name><suffix>.xlsx``, or the fallback name."""
    for name in source_names:
        if not name:
            continue
        stem = PurePath(name).stem
        if stem:
            return f"{stem}{settings.output_suffix}.xlsx"
        break
    return f"{settings.fallback_output_name}.xlsx"


def generate(
    template: Workbook,
    sources: list[Workbook],
    mapping: Mapping[TemplateKey, SourceKey],
    mode: GenerationMode = GenerationMode.PER_SHEET,
    max_rows: Optional[int] = None,
) -> GeneratedArtifact:
    """Synthesize and encode the output workbook."""
    output = synthesize(template, sources, mapping, mode=mode, max_rows=max_rows)
    filename = output_filename([wb.name for wb in sources])
    content = encode(output)
    logger.info(
        f"Generated '{filename}' ({mode.value}): {len(output.sheets)} sheet(s), "
        f"{output.row_count} row(s), {len(content)} bytes"
    )
    return GeneratedArtifact(
        filename=filename,
        content=content,
        sheet_count=len(output.sheets),
        row_count=output.row_count,
    )
