import logging

from beacon.core.logging_buffer import logging_buffer
from beacon.services.notification_channels import ChannelResult, Notification, default_channels
from beacon.services.notification_gate import NotificationGate
from beacon.services.settings_resolver import SettingsResolver, settings_resolver

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        resolver: SettingsResolver | None = None,
        gate: NotificationGate | None = None,
        channels: list | None = None,
    ):
        self.resolver = resolver or settings_resolver
        self.gate = gate or NotificationGate()
        self.channels = channels if channels is not None else default_channels()

    async def _deliver(self, config, notification: Notification) -> list[ChannelResult]:
        results: list[ChannelResult] = []
        for channel in self.channels:
            if not channel.configured(config):
                continue
            try:
                result = await channel.send(config, notification)
            except Exception as exc:
                logger.error("Channel %s raised for %s: %s", channel.name, notification.device_id, exc)
                result = ChannelResult(channel.name, False, str(exc))
            results.append(result)
        return results

    async def dispatch(self, repo, device_id: str, device_name: str, message: str, notification_type: str) -> bool:
        config = await self.resolver.get_notification_settings(repo)
        if not config.is_enabled(notification_type):
            logger.debug("Notification skipped: %s disabled", notification_type)
            return False

        if not await self.gate.can_send(repo, device_id, notification_type):
            logging_buffer.add("processing", f"Notification skipped: {notification_type} for {device_id}")
            return False

        notification = Notification(device_id, device_name, message, notification_type)
        results = await self._deliver(config, notification)
        delivered = any(r.success for r in results)
        if not delivered:
            logger.warning(
                "Notification not delivered: %s/%s (channels=%s)",
                device_id, notification_type, [r.channel for r in results],
            )
            return False

        try:
            await self.gate.mark_sent(repo, device_id, notification_type)
        except Exception as exc:
            logger.error("Failed to record cooldown for %s/%s: %s", device_id, notification_type, exc)
        logger.info(
            "Notification sent: %s/%s via %s",
            device_id, notification_type, [r.channel for r in results if r.success],
        )
        logging_buffer.add("processing", f"Notification sent: {notification_type} for {device_id}")
        return True

    async def send_test(self, repo, message: str) -> tuple[bool, list[ChannelResult]]:
        config = await self.resolver.get_notification_settings(repo)
        notification = Notification("test", "Test Device", message, "test")
        results = await self._deliver(config, notification)
        return any(r.success for r in results), results


notification_dispatcher = NotificationDispatcher()
