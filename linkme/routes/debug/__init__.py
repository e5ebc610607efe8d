"""Debug route aggregation."""

from fastapi import APIRouter

from linkme.routes.debug import sessions

router = APIRouter(prefix="/debug", tags=["debug"])

router.include_router(sessions.router)
