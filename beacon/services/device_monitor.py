"""Offline, low-battery and rooted-device scans.

Each scan reads the latest reading per device from both telemetry sources,
reduces them to one reading per device, and only then applies its threshold.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from beacon.core.config import settings
from beacon.core.database import async_session
from beacon.core.logging_buffer import logging_buffer
from beacon.services.json_paths import safely_get_nested_property
from beacon.services.notification_dispatcher import NotificationDispatcher, notification_dispatcher
from beacon.services.settings_resolver import SettingsResolver, settings_resolver
from beacon.services.telemetry_mapper import SOURCE_HISTORY, SOURCE_STRUCTURED, as_utc, history_blob
from beacon.services.telemetry_repository import TelemetryRepository

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class DeviceReading:
    device: Any
    timestamp: datetime | None
    source: str
    battery_level: float | None
    battery_status: str | None
    is_rooted: bool


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _status_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value)).strip()


def reading_from_structured(device: Any, row: Any) -> DeviceReading:
    return DeviceReading(
        device=device,
        timestamp=as_utc(row.timestamp),
        source=SOURCE_STRUCTURED,
        battery_level=_number(row.battery_level),
        battery_status=_status_text(row.battery_status),
        is_rooted=_truthy(row.is_rooted),
    )


def reading_from_history(device: Any, row: Any) -> DeviceReading:
    blob = history_blob(row)
    return DeviceReading(
        device=device,
        timestamp=as_utc(row.timestamp),
        source=SOURCE_HISTORY,
        battery_level=_number(safely_get_nested_property(blob, ["battery_info", "battery_level"])),
        battery_status=_status_text(safely_get_nested_property(blob, ["battery_info", "battery_status"])),
        is_rooted=_truthy(safely_get_nested_property(blob, ["security_info", "is_rooted"])),
    )


def _ranking(reading: DeviceReading) -> tuple[datetime, int]:
    return (reading.timestamp or _EPOCH, 1 if reading.source == SOURCE_STRUCTURED else 0)


def latest_readings_by_device(readings: list[DeviceReading]) -> dict[str, DeviceReading]:
    latest: dict[str, DeviceReading] = {}
    for reading in readings:
        key = reading.device.android_id
        current = latest.get(key)
        if current is None or _ranking(reading) > _ranking(current):
            latest[key] = reading
    return latest


async def collect_latest_readings(repo) -> dict[str, DeviceReading]:
    readings = [reading_from_structured(d, r) for d, r in await repo.latest_structured_per_device()]
    readings.extend(reading_from_history(d, r) for d, r in await repo.latest_history_per_device())
    return latest_readings_by_device(readings)


async def check_offline_devices(
    repo,
    dispatcher: NotificationDispatcher | None = None,
    resolver: SettingsResolver | None = None,
    now: datetime | None = None,
) -> int:
    dispatcher = dispatcher or notification_dispatcher
    resolver = resolver or settings_resolver
    config = await resolver.get_notification_settings(repo)
    if not config.notify_device_offline:
        return 0

    threshold = config.additional_settings.offline_threshold
    cutoff = (as_utc(now) or datetime.now(timezone.utc)) - timedelta(minutes=threshold)
    sent = 0
    for device in await repo.devices_last_seen_before(cutoff):
        delivered = await dispatcher.dispatch(
            repo,
            device.android_id,
            device.device_name or "Unknown Device",
            f"Device has been offline for more than {threshold} minutes",
            "device_offline",
        )
        sent += int(delivered)
    return sent


async def check_low_battery(
    repo,
    dispatcher: NotificationDispatcher | None = None,
    resolver: SettingsResolver | None = None,
) -> int:
    dispatcher = dispatcher or notification_dispatcher
    resolver = resolver or settings_resolver
    config = await resolver.get_notification_settings(repo)
    if not config.notify_low_battery:
        return 0

    threshold = config.additional_settings.battery_threshold
    sent = 0
    for android_id, reading in (await collect_latest_readings(repo)).items():
        if reading.battery_level is None or reading.battery_level >= threshold:
            continue
        # charging or full devices are exempt
        if (reading.battery_status or "").lower() != "discharging":
            continue
        level = int(reading.battery_level) if reading.battery_level.is_integer() else reading.battery_level
        delivered = await dispatcher.dispatch(
            repo,
            android_id,
            reading.device.device_name or "Unknown Device",
            f"Battery level is {level}% and discharging",
            "low_battery",
        )
        sent += int(delivered)
    return sent


async def check_security_issues(
    repo,
    dispatcher: NotificationDispatcher | None = None,
    resolver: SettingsResolver | None = None,
) -> int:
    dispatcher = dispatcher or notification_dispatcher
    resolver = resolver or settings_resolver
    config = await resolver.get_notification_settings(repo)
    if not config.notify_security_issues:
        return 0

    sent = 0
    for android_id, reading in (await collect_latest_readings(repo)).items():
        if not reading.is_rooted:
            continue
        delivered = await dispatcher.dispatch(
            repo,
            android_id,
            reading.device.device_name or "Unknown Device",
            "Security issue detected: Device is rooted",
            "security_issue",
        )
        sent += int(delivered)
    return sent


_CHECKS = (
    ("device_offline", check_offline_devices),
    ("low_battery", check_low_battery),
    ("security_issue", check_security_issues),
)


async def _run_check(session_factory, repo_factory, name: str, check, dispatcher) -> int:
    async with session_factory() as session:
        repo = repo_factory(session)
        try:
            return await check(repo, dispatcher=dispatcher)
        except Exception as exc:
            logger.error("Monitor %s failed: %s", name, exc)
            await session.rollback()
            return 0


async def run_device_monitoring(
    session_factory=None,
    dispatcher: NotificationDispatcher | None = None,
    repo_factory=TelemetryRepository,
) -> dict[str, int]:
    """Run the three scans concurrently, one session each."""
    session_factory = session_factory or async_session
    counts = await asyncio.gather(
        *(_run_check(session_factory, repo_factory, name, check, dispatcher) for name, check in _CHECKS)
    )
    summary = {name: count for (name, _), count in zip(_CHECKS, counts)}
    logger.info("Monitor run finished: %s", summary)
    logging_buffer.add("processing", f"Monitor run: {summary}")
    return summary


async def background_device_monitor(stop_event: asyncio.Event) -> None:
    interval = settings.MONITOR_INTERVAL_SECONDS
    while not stop_event.is_set():
        try:
            await run_device_monitoring()
            for _ in range(interval):
                if stop_event.is_set():
                    return
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("background device monitor loop error: %s", exc)
            await asyncio.sleep(5)
