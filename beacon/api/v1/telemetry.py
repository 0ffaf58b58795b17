import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from beacon.api.v1.deps import get_repository
from beacon.core.security import require_ingest_api_key
from beacon.schemas.telemetry import TelemetryAccepted
from beacon.services.json_paths import TelemetryPayloadError, parse_telemetry_body
from beacon.services.telemetry_ingest import ingest_telemetry, notify_new_device
from beacon.services.telemetry_repository import TelemetryRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["telemetry"])


@router.post("/telemetry", response_model=TelemetryAccepted)
async def receive_telemetry(
    request: Request,
    background_tasks: BackgroundTasks,
    _api_key: str = Depends(require_ingest_api_key),
    repo: TelemetryRepository = Depends(get_repository),
):
    raw = await request.body()
    try:
        payload = parse_telemetry_body(raw)
        accepted, device, created = await ingest_telemetry(repo, payload)
    except TelemetryPayloadError as exc:
        logger.info("Rejected telemetry: %s", exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())
    except SQLAlchemyError as exc:
        await repo.rollback()
        logger.error("Telemetry write failed: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Database error", "details": str(exc)})

    if created:
        background_tasks.add_task(notify_new_device, accepted.device_id, device.device_name or "Unknown Device")
    return accepted
