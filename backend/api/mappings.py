"""Session-scoped mapping endpoints: inspect, edit and auto-match the mapping."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.api.deps import get_session
from backend.core.models import (
    AutoMatchResponse,
    FieldOption,
    FieldOptions,
    MappingEntry,
    MappingResponse,
    SourceKeyModel,
)
from backend.core.session import ReconcileSession
from backend.core.workbook import TemplateKey

router = APIRouter()


def mapping_response(session: ReconcileSession) -> MappingResponse:
    store = session.mapping
    sheets = session.template.sheet_names if session.template is not None else []
    return MappingResponse(
        entries=[MappingEntry.from_keys(k, v) for k, v in store.items()],
        selected_source_keys=[
            SourceKeyModel.from_key(k)
            for k in sorted(store.selected_source_keys(), key=lambda k: (k.sheet, k.field, k.source_id or ""))
        ],
        sheets_with_mappings=[s for s in sheets if store.has_mapping_for_sheet(s)],
    )


@router.get("/mapping", response_model=MappingResponse)
async def get_mapping(session: ReconcileSession = Depends(get_session)):
    """Current mapping plus the state the UI needs to grey out claimed fields."""
    return mapping_response(session)


@router.put("/mapping", response_model=MappingResponse)
async def set_mapping(body: MappingEntry, session: ReconcileSession = Depends(get_session)):
    """Bind a template field to a source field (last write wins)."""
    session.set_mapping(body.template.to_key(), body.source.to_key())
    return mapping_response(session)


@router.delete("/mapping", response_model=MappingResponse)
async def clear_mapping(
    key: Optional[str] = Query(None, description="Template key as 'sheet|field'"),
    sheet: Optional[str] = Query(None, description="Template sheet name"),
    field: Optional[str] = Query(None, description="Template field name"),
    session: ReconcileSession = Depends(get_session),
):
    """Unbind a template field, given as ``key`` or as ``sheet`` + ``field``.

    Clearing an unbound field is a no-op.
    """
    if key is not None:
        try:
            template_key = TemplateKey.parse(key)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    elif sheet is not None and field is not None:
        template_key = TemplateKey(sheet=sheet, field=field)
    else:
        raise HTTPException(status_code=400, detail="Provide 'key' or both 'sheet' and 'field'")

    session.clear_mapping(template_key)
    return mapping_response(session)


@router.post("/mapping/auto", response_model=AutoMatchResponse)
async def run_auto_match(session: ReconcileSession = Depends(get_session)):
    """Propose bindings for every template field that has none yet."""
    added = session.auto_match()
    return AutoMatchResponse(
        added=[MappingEntry.from_keys(k, v) for k, v in added.items()],
        mapping=mapping_response(session),
    )


@router.get("/mapping/options", response_model=list[FieldOptions])
async def get_mapping_options(session: ReconcileSession = Depends(get_session)):
    """For each template field, the source fields it could be bound to."""
    return [
        FieldOptions(
            sheet=item["sheet"],
            field=item["field"],
            current=SourceKeyModel.from_key(item["current"]) if item["current"] else None,
            options=[FieldOption(**option) for option in item["options"]],
        )
        for item in session.mapping_options()
    ]
