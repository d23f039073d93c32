"""Workbook Model — normalized, immutable in-memory spreadsheet representation.

A workbook is an ordered tuple of sheets; a sheet is an ordered tuple of
header fields plus row data aligned positionally with those headers.
Template and source workbooks share the same model. Instances are frozen:
anything that needs different content builds a new workbook.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

KEY_SEPARATOR = "|"


def is_empty(value: Any) -> bool:
    """A cell is empty when it holds no value or the empty string."""
    return value is None or value == ""


@dataclass(frozen=True)
class Field:
    """A named column identity. Equality is case-sensitive by name."""
    name: str


@dataclass(frozen=True)
class TemplateKey:
    """Identity of one output column slot: ``sheet|field`` in the template."""
    sheet: str
    field: str

    def __str__(self) -> str:
        return f"{self.sheet}{KEY_SEPARATOR}{self.field}"

    @classmethod
    def parse(cls, value: str) -> "TemplateKey":
        sheet, sep, field_name = value.partition(KEY_SEPARATOR)
        if not sep:
            raise ValueError(f"Invalid template key '{value}': expected 'sheet|field'")
        return cls(sheet=sheet, field=field_name)


@dataclass(frozen=True)
class SourceKey:
    """Identity of one input column: ``sheet|field``.

    ``source_id`` scopes the key to one source workbook when several are
    loaded. ``None`` means "whichever source holds the sheet".
    """
    sheet: str
    field: str
    source_id: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.sheet}{KEY_SEPARATOR}{self.field}"


@dataclass(frozen=True)
class Sheet:
    """One worksheet: ordered headers and rows. Rows may be shorter than headers."""
    name: str
    headers: tuple[Field, ...]
    rows: tuple[tuple[Any, ...], ...] = ()
    source_id: Optional[str] = None

    @property
    def field_names(self) -> list[str]:
        return [h.name for h in self.headers]

    def column_index(self, field_name: str) -> Optional[int]:
        """0-based index of the first header named ``field_name``."""
        for i, header in enumerate(self.headers):
            if header.name == field_name:
                return i
        return None

    def cell(self, row_index: int, column_index: int) -> Any:
        """Cell value, or None when the row or trailing cell does not exist."""
        if row_index >= len(self.rows):
            return None
        row = self.rows[row_index]
        if column_index >= len(row):
            return None
        return row[column_index]

    def column_values(self, column_index: int) -> Iterator[Any]:
        for row_index in range(len(self.rows)):
            yield self.cell(row_index, column_index)

    def template_keys(self) -> list[TemplateKey]:
        return [TemplateKey(self.name, h.name) for h in self.headers]


@dataclass(frozen=True)
class Workbook:
    """A decoded workbook. ``name`` is the file name it was decoded from, if any."""
    id: str
    sheets: tuple[Sheet, ...] = field(default_factory=tuple)
    name: Optional[str] = None

    @property
    def sheet_names(self) -> list[str]:
        return [s.name for s in self.sheets]

    def sheet(self, name: str) -> Optional[Sheet]:
        """First sheet called ``name``."""
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    @property
    def row_count(self) -> int:
        return sum(len(s.rows) for s in self.sheets)


def make_sheet(
    name: str,
    headers: list[str],
    rows: Optional[list[list[Any]]] = None,
    source_id: Optional[str] = None,
) -> Sheet:
    """Build a Sheet from plain lists."""
    return Sheet(
        name=name,
        headers=tuple(Field(h) for h in headers),
        rows=tuple(tuple(r) for r in (rows or [])),
        source_id=source_id,
    )
