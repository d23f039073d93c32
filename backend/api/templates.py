"""Stored template endpoints (not session-scoped)."""

import logging

from fastapi import APIRouter, HTTPException, Request

from backend.core.models import TemplateListResponse, TemplateShapeResponse
from backend.core.template_store import TemplateNotFoundError, TemplateStoreError
from backend.core.workbook_codec import DecodeError, decode

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/templates", response_model=TemplateListResponse)
async def list_templates(request: Request):
    """List the templates available from storage."""
    store = request.app.state.template_store
    try:
        names = store.list_templates()
    except TemplateStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return TemplateListResponse(backend=store.backend, templates=names)


@router.get("/templates/{name:path}", response_model=TemplateShapeResponse)
async def get_template(name: str, request: Request):
    """Describe a stored template: its sheets and field names."""
    store = request.app.state.template_store
    try:
        content = store.download(name)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail=f"Template '{name}' not found")
    except TemplateStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    try:
        workbook = decode(content, name=name)
    except DecodeError as e:
        logger.error(f"Stored template '{name}' is unusable: {e}")
        raise HTTPException(status_code=422, detail=f"Template '{name}' is unusable: {e}")

    return TemplateShapeResponse.from_workbook(workbook, name)
