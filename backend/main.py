"""TemplateMapper — FastAPI application entry point.

Initializes template storage and the session registry on startup and
registers API routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.core import redis_client
from backend.core.config import settings
from backend.core.session import SessionRegistry
from backend.core.template_store import get_template_store
from backend.api import health, templates, sessions, sources, mappings, generate

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize template storage and session state on startup."""
    logger.info("Starting TemplateMapper backend...")

    if settings.template_backend == "redis":
        redis_client.init_redis_client()

    app.state.template_store = get_template_store()
    logger.info(f"Template store initialized ({app.state.template_store.backend})")

    app.state.session_registry = SessionRegistry()

    logger.info("TemplateMapper backend ready")
    yield

    logger.info("Shutting down TemplateMapper backend...")
    redis_client.close_redis_client()
    logger.info("TemplateMapper backend stopped")


app = FastAPI(
    title="TemplateMapper",
    version="0.1.0",
    description="Map fields from arbitrary source spreadsheets onto a fixed-shape "
                "template workbook and generate the populated workbook.",
    lifespan=lifespan,
)

# --- Top-level routes (not session-scoped) ---
app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(templates.router, prefix="/api", tags=["templates"])
app.include_router(sessions.router, prefix="/api", tags=["sessions"])

# --- Session-scoped routes: /api/sessions/{sid}/... ---
app.include_router(sources.router, prefix="/api/sessions/{sid}", tags=["sources"])
app.include_router(mappings.router, prefix="/api/sessions/{sid}", tags=["mapping"])
app.include_router(generate.router, prefix="/api/sessions/{sid}", tags=["generate"])
