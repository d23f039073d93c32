"""Health check endpoint: verifies backend + template storage."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check backend status and template storage reachability."""
    store = request.app.state.template_store
    storage_ok = store.check_connection()

    return {
        "status": "ok" if storage_ok else "degraded",
        "services": {
            "template_storage": "ok" if storage_ok else "error",
        },
        "template_backend": store.backend,
        "sessions": len(request.app.state.session_registry.list_sessions()),
    }
