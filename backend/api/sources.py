"""Session-scoped file endpoints: template and source workbooks.

Handles template upload / retrieval from storage, source uploads, removal,
selection and active-source switching.
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from backend.api.deps import get_session
from backend.api.sessions import session_response, source_response
from backend.core.models import (
    ActiveSource,
    SessionResponse,
    SourceSelection,
    SourceUploadResponse,
    UploadErrorResponse,
)
from backend.core.session import (
    ReconcileSession,
    UnknownSourceError,
    UploadTooLargeError,
)
from backend.core.template_store import TemplateNotFoundError, TemplateStoreError
from backend.core.workbook_codec import DecodeError

logger = logging.getLogger(__name__)

router = APIRouter()

SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm")


def _is_supported(filename: str | None) -> bool:
    return bool(filename) and filename.lower().endswith(SUPPORTED_EXTENSIONS)


def _install_template(session: ReconcileSession, content: bytes, name: str) -> None:
    try:
        session.set_template(content, name)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except DecodeError as e:
        if e.reason == "no_usable_sheets":
            detail = f"No valid headers found in template: {name}"
        else:
            detail = f"Could not read template '{name}': {e}"
        raise HTTPException(status_code=400, detail=detail)


@router.post("/template", response_model=SessionResponse)
async def upload_template(
    file: UploadFile = File(...),
    session: ReconcileSession = Depends(get_session),
):
    """Upload the template workbook (.xlsx) that defines the output shape."""
    if not _is_supported(file.filename):
        raise HTTPException(status_code=400, detail="Only Excel files (.xlsx, .xlsm) are supported")

    content = await file.read()
    _install_template(session, content, file.filename)
    return session_response(session)


@router.post("/template/{name:path}", response_model=SessionResponse)
async def load_stored_template(
    name: str,
    request: Request,
    session: ReconcileSession = Depends(get_session),
):
    """Install a template downloaded from template storage."""
    store = request.app.state.template_store
    try:
        content = store.download(name)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail=f"Template '{name}' not found")
    except TemplateStoreError as e:
        logger.error(f"Error loading template '{name}': {e}")
        raise HTTPException(status_code=503, detail=str(e))

    _install_template(session, content, name)
    return session_response(session)


@router.post("/sources", response_model=SourceUploadResponse)
async def upload_sources(
    files: list[UploadFile] = File(...),
    session: ReconcileSession = Depends(get_session),
):
    """Upload one or more source workbooks.

    Files that cannot be used are reported individually; the rest are added.
    """
    accepted: list[tuple[str, bytes]] = []
    errors: list[UploadErrorResponse] = []
    for upload in files:
        if not _is_supported(upload.filename):
            errors.append(UploadErrorResponse(
                filename=upload.filename or "",
                message="Only Excel files (.xlsx, .xlsm) are supported",
                reason="unsupported_type",
            ))
            continue
        accepted.append((upload.filename, await upload.read()))

    before = len(session.mapping)
    added, decode_errors = session.add_sources(accepted)
    errors.extend(
        UploadErrorResponse(filename=e.filename, message=e.message, reason=e.reason)
        for e in decode_errors
    )

    return SourceUploadResponse(
        added=[source_response(s) for s in added],
        errors=errors,
        auto_matched=len(session.mapping) - before,
    )


@router.delete("/sources/{source_id}", response_model=SessionResponse)
async def remove_source(source_id: str, session: ReconcileSession = Depends(get_session)):
    """Remove a source file from the session."""
    try:
        session.remove_source(source_id)
    except UnknownSourceError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session_response(session)


@router.put("/sources/selection", response_model=SessionResponse)
async def select_sources(body: SourceSelection, session: ReconcileSession = Depends(get_session)):
    """Set which sources take part in generation, in merge order."""
    try:
        session.select_sources(body.source_ids)
    except UnknownSourceError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session_response(session)


@router.put("/sources/active", response_model=SessionResponse)
async def set_active_source(body: ActiveSource, session: ReconcileSession = Depends(get_session)):
    """Switch the active source used for per-sheet generation."""
    try:
        session.set_active_source(body.source_id)
    except UnknownSourceError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session_response(session)
