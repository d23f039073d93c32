"""Pydantic models for API request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from backend.core.field_matcher import MatchPolicy
from backend.core.workbook import Sheet, SourceKey, TemplateKey, Workbook


# --- Workbook shapes ---


class SheetShape(BaseModel):
    name: str
    fields: list[str]
    row_count: int = 0

    @classmethod
    def from_sheet(cls, sheet: Sheet) -> "SheetShape":
        return cls(name=sheet.name, fields=sheet.field_names, row_count=len(sheet.rows))


class TemplateShapeResponse(BaseModel):
    name: Optional[str] = None
    sheets: list[SheetShape] = []

    @classmethod
    def from_workbook(cls, workbook: Workbook, name: Optional[str] = None) -> "TemplateShapeResponse":
        return cls(
            name=name or workbook.name,
            sheets=[SheetShape.from_sheet(s) for s in workbook.sheets],
        )


class TemplateListResponse(BaseModel):
    backend: str
    templates: list[str]


# --- Session API models ---


class SessionCreate(BaseModel):
    match_policy: Optional[MatchPolicy] = Field(
        None, description="Auto-match uniqueness policy; defaults to the server setting"
    )
    reset_mapping_on_active_change: Optional[bool] = Field(
        None, description="Discard the mapping when the active source changes"
    )


class SourceFileResponse(BaseModel):
    source_id: str
    name: str
    sheets: list[SheetShape] = []


class SessionResponse(BaseModel):
    session_id: str
    created_at: datetime
    match_policy: MatchPolicy
    reset_mapping_on_active_change: bool
    template: Optional[TemplateShapeResponse] = None
    sources: list[SourceFileResponse] = []
    selected_source_ids: list[str] = []
    active_source_id: Optional[str] = None
    mapping_count: int = 0


class UploadErrorResponse(BaseModel):
    filename: str
    message: str
    reason: str


class SourceUploadResponse(BaseModel):
    added: list[SourceFileResponse] = []
    errors: list[UploadErrorResponse] = []
    auto_matched: int = 0


class SourceSelection(BaseModel):
    source_ids: list[str]


class ActiveSource(BaseModel):
    source_id: str


# --- Mapping API models ---


class SourceKeyModel(BaseModel):
    sheet: str
    field: str
    source_id: Optional[str] = None

    @classmethod
    def from_key(cls, key: SourceKey) -> "SourceKeyModel":
        return cls(sheet=key.sheet, field=key.field, source_id=key.source_id)

    def to_key(self) -> SourceKey:
        return SourceKey(sheet=self.sheet, field=self.field, source_id=self.source_id)


class TemplateKeyModel(BaseModel):
    sheet: str
    field: str

    def to_key(self) -> TemplateKey:
        return TemplateKey(sheet=self.sheet, field=self.field)


class MappingEntry(BaseModel):
    template: TemplateKeyModel
    source: SourceKeyModel

    @classmethod
    def from_keys(cls, template_key: TemplateKey, source_key: SourceKey) -> "MappingEntry":
        return cls(
            template=TemplateKeyModel(sheet=template_key.sheet, field=template_key.field),
            source=SourceKeyModel.from_key(source_key),
        )


class MappingResponse(BaseModel):
    entries: list[MappingEntry] = []
    selected_source_keys: list[SourceKeyModel] = []
    sheets_with_mappings: list[str] = []


class AutoMatchResponse(BaseModel):
    added: list[MappingEntry] = []
    mapping: MappingResponse


class FieldOption(BaseModel):
    sheet: str
    field: str
    source_id: Optional[str] = None
    exact: bool = False
    claimed: bool = False


class FieldOptions(BaseModel):
    sheet: str
    field: str
    current: Optional[SourceKeyModel] = None
    options: list[FieldOption] = []
