import logging
import uuid
from datetime import datetime
from typing import Any

from beacon.schemas.device import DeviceStatus
from beacon.services.settings_resolver import SettingsResolver, settings_resolver
from beacon.services.telemetry_mapper import (
    SOURCE_HISTORY,
    SOURCE_STRUCTURED,
    as_utc,
    derive_device_status,
    history_blob,
    select_current_snapshot,
    structured_row_to_snapshot,
)

logger = logging.getLogger(__name__)


async def _guarded_lookup(repo, lookup, device_id: uuid.UUID, label: str):
    try:
        return await lookup(device_id)
    except Exception as exc:
        logger.warning("Latest %s telemetry lookup failed for %s: %s", label, device_id, exc)
        try:
            await repo.rollback()
        except Exception as rollback_exc:
            logger.warning("Rollback after %s lookup failed: %s", label, rollback_exc)
        return None


async def normalize(repo, device_id: uuid.UUID) -> dict[str, Any] | None:
    """Current snapshot for a device, or ``None`` when it never reported."""
    structured = await _guarded_lookup(repo, repo.latest_structured, device_id, SOURCE_STRUCTURED)
    history = await _guarded_lookup(repo, repo.latest_history, device_id, SOURCE_HISTORY)
    return select_current_snapshot(structured, history)


async def load_device_history(repo, device_id: uuid.UUID, limit: int = 50) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for row in await repo.list_structured(device_id, limit):
        items.append({"source": SOURCE_STRUCTURED, "ts": as_utc(row.timestamp), "telemetry": structured_row_to_snapshot(row)})
    for row in await repo.list_history(device_id, limit):
        blob = history_blob(row)
        if blob is None:
            continue
        items.append({"source": SOURCE_HISTORY, "ts": as_utc(row.timestamp), "telemetry": blob})

    # newest first; structured before history on equal timestamps
    items.sort(key=lambda item: item["source"] == SOURCE_HISTORY)
    items.sort(key=lambda item: item["ts"].timestamp() if item["ts"] else 0.0, reverse=True)
    return [
        {
            "source": item["source"],
            "timestamp": item["ts"].isoformat() if item["ts"] else None,
            "telemetry": item["telemetry"],
        }
        for item in items[:limit]
    ]


async def device_status(repo, device, offline_threshold_minutes: int, now: datetime | None = None) -> DeviceStatus:
    snapshot = await normalize(repo, device.id)
    return derive_device_status(device, snapshot, offline_threshold_minutes, now=now)


async def list_device_statuses(repo, resolver: SettingsResolver | None = None, now: datetime | None = None) -> list[DeviceStatus]:
    """Dashboard view of every device. A failing store yields an empty list."""
    resolver = resolver or settings_resolver
    threshold = await resolver.get_offline_threshold(repo)
    try:
        devices = await repo.list_devices()
    except Exception as exc:
        logger.error("Failed to list devices: %s", exc)
        await repo.rollback()
        return []
    return [await device_status(repo, device, threshold, now=now) for device in devices]
