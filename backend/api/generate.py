"""Session-scoped generation endpoint: returns the synthesized workbook."""

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from backend.api.deps import get_session
from backend.core.session import ReconcileSession, SessionStateError
from backend.core.synthesis_engine import (
    EmptyResultError,
    GenerationMode,
    NoMappingError,
    SynthesisError,
    SynthesisLimitError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate")
async def generate_workbook(
    mode: GenerationMode = Query(GenerationMode.PER_SHEET, description="Generation mode"),
    session: ReconcileSession = Depends(get_session),
):
    """Generate the mapped workbook and return it as an .xlsx download.

    - **per_sheet**: one output sheet per mapped template sheet, rows aligned by position
    - **columnar_merge**: one flat sheet, each mapped column compacted across selected files
    """
    try:
        artifact = session.generate(mode)
    except (NoMappingError, SessionStateError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SynthesisLimitError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except EmptyResultError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SynthesisError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Generation failed for session {session.session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error generating template. Please try again.")

    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(artifact.filename)}",
            "X-Generated-Sheets": str(artifact.sheet_count),
            "X-Generated-Rows": str(artifact.row_count),
        },
    )
