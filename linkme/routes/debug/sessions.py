"""Read-only view of observability sessions for operators."""

import base64

from fastapi import APIRouter, Depends, HTTPException

from linkme.features.outreach.api.router import get_pipeline, require_shared_secret
from linkme.features.outreach.pipeline import OutreachPipeline

router = APIRouter(dependencies=[Depends(require_shared_secret)])


@router.get("/sessions")
async def list_sessions(pipeline: OutreachPipeline = Depends(get_pipeline)):
    """Summaries of every tracked session, newest first."""
    return {"sessions": [session.summary() for session in pipeline.tracker.list_sessions()]}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, pipeline: OutreachPipeline = Depends(get_pipeline)):
    session = pipeline.tracker.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")

    return {
        **session.summary(),
        "logs": [
            {"timestamp": entry.timestamp.isoformat(), "message": entry.message}
            for entry in list(session.logs)
        ],
        "screenshots": [
            {
                "timestamp": shot.timestamp.isoformat(),
                "label": shot.label,
                "image_base64": base64.b64encode(shot.data).decode("ascii"),
            }
            for shot in list(session.screenshots)
        ],
    }
