import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from beacon.core.config import settings
from beacon.core.database import async_session
from beacon.core.logging_buffer import logging_buffer
from beacon.schemas.telemetry import TelemetryAccepted
from beacon.services.json_paths import resolve_device_identifier, safely_get_nested_property
from beacon.services.notification_dispatcher import NotificationDispatcher, notification_dispatcher
from beacon.services.telemetry_mapper import snapshot_to_structured_columns
from beacon.services.telemetry_repository import TelemetryRepository

logger = logging.getLogger(__name__)

STORAGE_HISTORY = "history"
STORAGE_STRUCTURED = "structured"


def _installed_packages(payload: dict[str, Any]) -> list[str]:
    apps = safely_get_nested_property(payload, ["app_info", "installed_apps"])
    if not isinstance(apps, list):
        return []
    packages: list[str] = []
    seen: set[str] = set()
    for app in apps:
        if isinstance(app, dict):
            app = app.get("package_name") or app.get("package")
        if not isinstance(app, str):
            continue
        pkg = app.strip()
        if pkg and pkg not in seen:
            seen.add(pkg)
            packages.append(pkg)
    return packages


async def _store_apps(repo, device_id, android_id: str, packages: list[str]) -> None:
    if not packages:
        return
    try:
        inserted = await repo.upsert_apps(device_id, packages)
        logger.info("Stored %s/%s apps for %s", inserted, len(packages), android_id)
    except SQLAlchemyError as exc:
        logger.warning("Error storing app data for %s: %s", android_id, exc)


async def ingest_telemetry(
    repo,
    payload: dict[str, Any],
    storage_mode: str | None = None,
    now: datetime | None = None,
) -> tuple[TelemetryAccepted, Any, bool]:
    """Persist one submission. Returns the response body, the device and whether it is new.

    Device and snapshot write failures propagate as ``SQLAlchemyError``; a
    failing app-list upsert only rolls back its savepoint.
    """
    android_id = resolve_device_identifier(payload)
    received_at = now or datetime.now(timezone.utc)
    mode = (storage_mode or settings.TELEMETRY_STORAGE_MODE or STORAGE_HISTORY).strip().lower()

    device, created = await repo.upsert_device(
        android_id,
        device_name=safely_get_nested_property(payload, ["device_info", "device_name"]) or "Unknown Device",
        manufacturer=safely_get_nested_property(payload, ["device_info", "manufacturer"]) or "Unknown",
        model=safely_get_nested_property(payload, ["device_info", "model"]) or "Unknown Model",
        seen_at=received_at,
    )

    if mode == STORAGE_STRUCTURED:
        await repo.add_structured(device.id, snapshot_to_structured_columns(payload), received_at)
    else:
        await repo.add_history(device.id, payload, received_at)

    await _store_apps(repo, device.id, android_id, _installed_packages(payload))
    await repo.commit()

    logger.info("Telemetry stored for %s (mode=%s, new=%s)", android_id, mode, created)
    logging_buffer.add("processing", f"Telemetry stored: {android_id}", {"mode": mode, "new_device": created})
    if created:
        logging_buffer.add("processing", f"New device registered: {android_id}")

    accepted = TelemetryAccepted(
        device_id=android_id,
        timestamp=received_at.isoformat(),
        received_data_size=len(json.dumps(payload, separators=(",", ":"), ensure_ascii=False)),
        received_keys=list(payload.keys()),
        new_device=created,
    )
    return accepted, device, created


async def notify_new_device(
    android_id: str,
    device_name: str,
    session_factory=None,
    dispatcher: NotificationDispatcher | None = None,
) -> bool:
    session_factory = session_factory or async_session
    dispatcher = dispatcher or notification_dispatcher
    async with session_factory() as session:
        repo = TelemetryRepository(session)
        try:
            return await dispatcher.dispatch(
                repo,
                android_id,
                device_name,
                f"New device detected: {device_name} (ID: {android_id})",
                "new_device",
            )
        except Exception as exc:
            logger.error("New device notification failed for %s: %s", android_id, exc)
            return False
