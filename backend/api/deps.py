"""FastAPI dependencies for session extraction and validation."""

from fastapi import Depends, HTTPException, Path, Request

from backend.core.session import ReconcileSession, SessionNotFoundError


async def get_session_id(
    sid: str = Path(..., description="Session ID", min_length=1, max_length=64)
) -> str:
    """Extract and validate session_id from URL path.

    Raises 400 if format is invalid.
    """
    if not sid.replace("_", "").isalnum():
        raise HTTPException(
            status_code=400,
            detail=f"Invalid session ID format: '{sid}'. "
                   f"Must be alphanumeric with underscores."
        )
    return sid


async def get_session(request: Request, sid: str = Depends(get_session_id)) -> ReconcileSession:
    """Look up the session in the application's registry (404 if unknown)."""
    registry = request.app.state.session_registry
    try:
        return registry.get(sid)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session '{sid}' not found")
