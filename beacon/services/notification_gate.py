import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from beacon.core.config import settings
from beacon.services.telemetry_mapper import as_utc

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationGate:
    """Per (device, notification type) allow/deny decision.

    ``device_id`` is the device-reported android_id. Enablement of a
    notification type is the dispatcher's concern, not the gate's.
    """

    def __init__(
        self,
        cooldown: timedelta | None = None,
        staleness: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cooldown = cooldown or timedelta(minutes=settings.NOTIFICATION_COOLDOWN_MINUTES)
        self.staleness = staleness or timedelta(hours=settings.NOTIFICATION_STALENESS_HOURS)
        self._clock = clock

    def now(self) -> datetime:
        return as_utc(self._clock())

    async def can_send(self, repo, device_id: str, notification_type: str) -> bool:
        try:
            now = self.now()
            device = await repo.get_device_by_android_id(device_id)
            if device is None:
                logger.warning("Notification skipped: unknown device %s (%s)", device_id, notification_type)
                return False

            latest = as_utc(await repo.latest_telemetry_timestamp(device.id))
            if latest is None:
                # telemetry purged or never stored
                latest = as_utc(device.last_seen)
            if latest is not None and now - latest > self.staleness:
                logger.info(
                    "Notification skipped: %s telemetry is stale (last %s), type=%s",
                    device_id, latest.isoformat(), notification_type,
                )
                return False

            last_sent = as_utc(await repo.get_cooldown(device_id, notification_type))
            if last_sent is not None and now - last_sent < self.cooldown:
                logger.info(
                    "Notification skipped: %s/%s in cooldown since %s",
                    device_id, notification_type, last_sent.isoformat(),
                )
                return False
            return True
        except Exception as exc:
            logger.error("Notification gate lookup failed for %s/%s: %s", device_id, notification_type, exc)
            await rollback_quietly(repo)
            return False

    async def mark_sent(self, repo, device_id: str, notification_type: str) -> None:
        try:
            await repo.upsert_cooldown(device_id, notification_type, self.now())
        except Exception:
            await rollback_quietly(repo)
            raise


async def rollback_quietly(repo) -> None:
    """Leave the session usable for the next device after a failed statement."""
    try:
        await repo.rollback()
    except Exception as exc:
        logger.warning("Rollback after notification store failure failed: %s", exc)
