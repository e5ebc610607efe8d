"""
Outreach HTTP endpoints: the acceptance webhook and operator record actions.

All endpoints are guarded by the X-Shared-Secret header.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from linkme.db.pool import DatabaseError
from linkme.features.outreach.domain.state_machine import InvalidTransitionError
from linkme.features.outreach.pipeline import OutreachPipeline
from linkme.features.outreach.repository.record_store import (
    RecordNotFoundError,
    RecordStoreError,
)
from linkme.features.outreach.services.webhook_service import (
    WebhookAuthError,
    verify_shared_secret,
)
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["outreach"])

SHARED_SECRET_HEADER = "X-Shared-Secret"


class AcceptedWebhookRequest(BaseModel):
    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "urn"))


def get_pipeline(request: Request) -> OutreachPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Outreach pipeline not initialized")
    return pipeline


def require_shared_secret(
    request: Request, pipeline: OutreachPipeline = Depends(get_pipeline)
) -> None:
    try:
        verify_shared_secret(
            request.headers.get(SHARED_SECRET_HEADER), pipeline.settings.WEBHOOK_SECRET
        )
    except WebhookAuthError as e:
        logger.warning("Rejected request with bad shared secret", path=request.url.path)
        raise HTTPException(status_code=401, detail=str(e)) from e


@router.post("/accepted", dependencies=[Depends(require_shared_secret)])
async def connection_accepted(request: Request, pipeline: OutreachPipeline = Depends(get_pipeline)):
    """External signal that a connection request was accepted."""
    raw = await request.body()
    try:
        payload = AcceptedWebhookRequest.model_validate_json(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail="Missing or invalid required field: id") from e

    try:
        result = await pipeline.webhook.accept(payload.id)
    except RecordNotFoundError as e:
        logger.warning("Acceptance for unknown record", record_id=payload.id)
        raise HTTPException(status_code=404, detail=f"Record not found: {payload.id}") from e
    except RecordStoreError as e:
        logger.error("Acceptance webhook failed", record_id=payload.id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error") from e

    return {
        "ok": True,
        "id": result.record.id,
        "status": result.record.status.value,
        "enqueued": result.enqueued,
    }


@router.get("/records/{record_id}", dependencies=[Depends(require_shared_secret)])
async def get_record(record_id: str, pipeline: OutreachPipeline = Depends(get_pipeline)):
    try:
        record = await pipeline.store.get(record_id)
    except RecordStoreError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record not found: {record_id}")
    return record.model_dump(mode="json")


@router.get("/records/{record_id}/events", dependencies=[Depends(require_shared_secret)])
async def get_record_events(record_id: str, pipeline: OutreachPipeline = Depends(get_pipeline)):
    try:
        events = await pipeline.events.list_for_record(record_id)
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {
        "id": record_id,
        "events": [event.model_dump(mode="json") for event in events],
        "enabled": pipeline.events.enabled,
    }


async def _run_manual_action(action, record_id: str) -> dict:
    try:
        record = await action(record_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Record not found: {record_id}") from e
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except RecordStoreError as e:
        logger.error("Manual action failed", record_id=record_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error") from e
    return record.model_dump(mode="json")


@router.post("/records/{record_id}/pause", dependencies=[Depends(require_shared_secret)])
async def pause_record(record_id: str, pipeline: OutreachPipeline = Depends(get_pipeline)):
    return await _run_manual_action(pipeline.manual_actions.pause, record_id)


@router.post("/records/{record_id}/resume", dependencies=[Depends(require_shared_secret)])
async def resume_record(record_id: str, pipeline: OutreachPipeline = Depends(get_pipeline)):
    return await _run_manual_action(pipeline.manual_actions.resume, record_id)
