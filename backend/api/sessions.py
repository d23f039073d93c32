"""Session management endpoints (not session-scoped)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from backend.api.deps import get_session
from backend.core.models import (
    SessionCreate,
    SessionResponse,
    SheetShape,
    SourceFileResponse,
    TemplateShapeResponse,
)
from backend.core.session import ReconcileSession, SessionNotFoundError, SourceFile

logger = logging.getLogger(__name__)

router = APIRouter()


def source_response(source: SourceFile) -> SourceFileResponse:
    return SourceFileResponse(
        source_id=source.id,
        name=source.name,
        sheets=[SheetShape.from_sheet(s) for s in source.workbook.sheets],
    )


def session_response(session: ReconcileSession) -> SessionResponse:
    template = None
    if session.template is not None:
        template = TemplateShapeResponse.from_workbook(session.template, session.template_name)
    return SessionResponse(
        session_id=session.session_id,
        created_at=session.created_at,
        match_policy=session.match_policy,
        reset_mapping_on_active_change=session.reset_mapping_on_active_change,
        template=template,
        sources=[source_response(s) for s in session.sources],
        selected_source_ids=session.selected_source_ids,
        active_source_id=session.active_source_id,
        mapping_count=len(session.mapping),
    )


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(request: Request, body: SessionCreate | None = None):
    """Start a new mapping session."""
    body = body or SessionCreate()
    registry = request.app.state.session_registry
    session = registry.create(
        match_policy=body.match_policy.value if body.match_policy else None,
        reset_mapping_on_active_change=body.reset_mapping_on_active_change,
    )
    return session_response(session)


@router.get("/sessions")
async def list_sessions(request: Request):
    """List live session IDs."""
    return {"sessions": request.app.state.session_registry.list_sessions()}


@router.get("/sessions/{sid}", response_model=SessionResponse)
async def get_session_detail(session: ReconcileSession = Depends(get_session)):
    """Get the session's template, sources and selection state."""
    return session_response(session)


@router.delete("/sessions/{sid}", status_code=204)
async def delete_session(request: Request, session: ReconcileSession = Depends(get_session)):
    """Discard a session and everything it holds."""
    try:
        request.app.state.session_registry.delete(session.session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session '{session.session_id}' not found")


@router.post("/sessions/{sid}/reset", response_model=SessionResponse)
async def reset_session(session: ReconcileSession = Depends(get_session)):
    """Clear the template, all sources and the mapping."""
    session.reset()
    return session_response(session)
