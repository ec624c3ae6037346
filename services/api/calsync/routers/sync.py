"""Job runner entrypoint and the user-facing "sync now" trigger."""

import logging
import uuid

from fastapi import APIRouter, Depends

from calsync.config import Settings, get_settings
from calsync.dependencies import get_current_user_id, get_sync_services, require_sync_secret
from calsync.errors import SyncError
from calsync.middleware.error_handler import sync_error_to_http
from calsync.schemas.sync import RunRequest, RunResponse, TriggerResponse
from calsync.services.sync_services import SyncServices
from calsync.services.trigger_gateway import TriggerGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


def get_trigger_gateway(settings: Settings = Depends(get_settings)) -> TriggerGateway:
    return TriggerGateway(settings)


@router.post("/run", response_model=RunResponse, dependencies=[Depends(require_sync_secret)])
async def run_jobs(
    body: RunRequest | None = None,
    services: SyncServices = Depends(get_sync_services),
):
    """Drain up to ``limit`` pending jobs."""
    body = body or RunRequest()
    summary = await services.runner.run_pending(body.limit)
    return RunResponse(
        processed=summary.processed,
        succeeded=summary.succeeded,
        failed=summary.failed,
        results=summary.results,
    )


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_sync(
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: TriggerGateway = Depends(get_trigger_gateway),
):
    """Wake the runner now instead of waiting for its next poll."""
    try:
        result = await gateway.trigger_now()
    except SyncError as exc:
        logger.warning("Sync trigger for user %s failed: %s", user_id, exc.message)
        raise sync_error_to_http(exc, status_code=502) from exc
    return TriggerResponse(**result)
