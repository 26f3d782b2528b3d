"""Qonto sync routes.

Routes:
- POST /sync        - Run a sync and return its summary
- GET  /sync/status - Recent runs and local totals per entity
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from finsync.core.services import Services
from finsync.models import SyncRequest, SyncRunStatus, SyncRunSummary
from finsync.pipeline.orchestrator import run_sync, sync_status
from finsync.web.dependencies import get_services

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("", response_model=SyncRunSummary)
async def trigger_sync(
    request: SyncRequest | None = None,
    services: Services = Depends(get_services),
):
    """Run a sync now.

    A failed run answers 500 with the same summary body, partial counts
    and error message included.
    """
    request = request or SyncRequest()
    summary = await run_sync(services, request.scope, request.force_full_sync)
    if summary.status is SyncRunStatus.FAILED:
        return JSONResponse(status_code=500, content=summary.model_dump(mode="json"))
    return summary


@router.get("/status")
async def get_sync_status(services: Services = Depends(get_services)):
    async with services.session_scope() as session:
        return await sync_status(session)
