from fastapi import APIRouter, Depends, HTTPException, Query

from beacon.core.config import settings
from beacon.core.logging_buffer import logging_buffer
from beacon.core.security import get_current_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_current_admin)])

_LOG_TYPES = ("all", "request", "processing", "error", "telemetry")


@router.get("/status")
async def service_status():
    return {
        "version": settings.VERSION,
        "storage_mode": settings.TELEMETRY_STORAGE_MODE,
        "settings_cache_ttl_seconds": settings.SETTINGS_CACHE_TTL_SECONDS,
        "notification_cooldown_minutes": settings.NOTIFICATION_COOLDOWN_MINUTES,
        "notification_staleness_hours": settings.NOTIFICATION_STALENESS_HOURS,
        "monitor_interval_seconds": settings.MONITOR_INTERVAL_SECONDS,
        "live_journal_enabled": logging_buffer.enabled,
    }


# ==================== LOGS (LIVE JOURNAL) ====================

@router.post("/logs/start")
async def logs_start():
    logging_buffer.start()
    return {"status": "ok", "enabled": True}


@router.post("/logs/stop")
async def logs_stop():
    logging_buffer.stop()
    return {"status": "ok", "enabled": False}


@router.post("/logs/clear")
async def logs_clear():
    logging_buffer.clear()
    return {"status": "ok"}


@router.get("/logs")
async def get_logs(
    log_type: str = Query("all"),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    if log_type not in _LOG_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown log_type, expected one of {', '.join(_LOG_TYPES)}")
    logs = logging_buffer.get_logs(log_type=log_type, limit=limit, offset=offset)
    return {"enabled": logging_buffer.enabled, "items": logs, "count": len(logs)}
