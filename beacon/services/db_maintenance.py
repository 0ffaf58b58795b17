import asyncio
import logging
from datetime import datetime, timedelta, timezone

from beacon.core.config import settings
from beacon.core.database import async_session
from beacon.core.logging_buffer import logging_buffer
from beacon.services.settings_resolver import SettingsResolver, settings_resolver
from beacon.services.telemetry_repository import TelemetryRepository

logger = logging.getLogger(__name__)


def retention_days(config) -> int:
    extra = config.additional_settings.model_extra or {}
    raw = extra.get("data_retention")
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return settings.RETENTION_DEFAULT_DAYS
    return days if days > 0 else settings.RETENTION_DEFAULT_DAYS


async def purge_expired_telemetry_once(
    repo,
    resolver: SettingsResolver | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    resolver = resolver or settings_resolver
    config = await resolver.get_notification_settings(repo)
    days = retention_days(config)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)

    removed = await repo.purge_telemetry_before(cutoff)
    await repo.commit()
    if removed["history"] or removed["structured"]:
        logger.info("Purged telemetry older than %s days: %s", days, removed)
        logging_buffer.add("processing", f"Retention purge ({days}d): {removed}")
    return removed


async def background_db_maintenance(stop_event: asyncio.Event) -> None:
    interval = settings.RETENTION_INTERVAL_SECONDS

    while not stop_event.is_set():
        try:
            async with async_session() as session:
                await purge_expired_telemetry_once(TelemetryRepository(session))
            for _ in range(interval):
                if stop_event.is_set():
                    return
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("background db maintenance loop error: %s", exc)
            await asyncio.sleep(5)
