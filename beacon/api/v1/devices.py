import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from beacon.api.v1.deps import get_repository
from beacon.core.logging_buffer import logging_buffer
from beacon.core.security import get_current_admin
from beacon.schemas.device import DeviceDeleteResponse, DeviceHistoryItem, DeviceStatus
from beacon.services.settings_resolver import settings_resolver
from beacon.services.telemetry_normalizer import device_status, list_device_statuses, load_device_history
from beacon.services.telemetry_repository import TelemetryRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/devices", tags=["devices"], dependencies=[Depends(get_current_admin)])


async def _require_device(repo: TelemetryRepository, android_id: str):
    try:
        device = await repo.get_device_by_android_id(android_id)
    except SQLAlchemyError as exc:
        logger.error("Device lookup failed for %s: %s", android_id, exc)
        await repo.rollback()
        raise HTTPException(status_code=503, detail="Device store unavailable")
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.get("", response_model=list[DeviceStatus])
async def list_devices(repo: TelemetryRepository = Depends(get_repository)):
    return await list_device_statuses(repo)


@router.get("/{android_id}", response_model=DeviceStatus)
async def get_device(android_id: str, repo: TelemetryRepository = Depends(get_repository)):
    device = await _require_device(repo, android_id)
    threshold = await settings_resolver.get_offline_threshold(repo)
    return await device_status(repo, device, threshold)


@router.get("/{android_id}/history", response_model=list[DeviceHistoryItem])
async def get_device_history(
    android_id: str,
    limit: int = Query(50, ge=1, le=500),
    repo: TelemetryRepository = Depends(get_repository),
):
    device = await _require_device(repo, android_id)
    try:
        return await load_device_history(repo, device.id, limit)
    except SQLAlchemyError as exc:
        logger.error("History lookup failed for %s: %s", android_id, exc)
        await repo.rollback()
        return []


@router.delete("/{android_id}", response_model=DeviceDeleteResponse)
async def delete_device(android_id: str, repo: TelemetryRepository = Depends(get_repository)):
    device = await _require_device(repo, android_id)
    try:
        removed = await repo.delete_device(device)
        await repo.commit()
    except SQLAlchemyError as exc:
        await repo.rollback()
        logger.error("Device removal failed for %s: %s", android_id, exc)
        return JSONResponse(status_code=500, content={"error": "Database error", "details": str(exc)})
    logger.info("Device removed: %s (%s)", android_id, removed)
    logging_buffer.add("processing", f"Device removed: {android_id}", removed)
    return DeviceDeleteResponse(success=True, android_id=android_id, removed=removed)
