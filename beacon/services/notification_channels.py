import asyncio
import html
import logging
import smtplib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from aiogram import Bot

from beacon.core.config import settings
from beacon.schemas.notification import NotificationSettings

log = logging.getLogger(__name__)

_EMOJI = {
    "device_offline": "🔌",
    "low_battery": "🪫",
    "security_issue": "⚠️",
    "new_device": "🆕",
    "test": "🧪",
}
_DEFAULT_EMOJI = "📱"

_EMAIL_SUBJECTS = {
    "device_offline": "Device Offline Alert",
    "low_battery": "Low Battery Alert",
    "security_issue": "Security Issue Alert",
    "new_device": "New Device Detected",
}
_DEFAULT_SUBJECT = "Device Alert"


@dataclass(frozen=True)
class Notification:
    device_id: str
    device_name: str
    message: str
    notification_type: str


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    success: bool
    error: str | None = None


class FixedWindowRateLimiter:
    def __init__(self, max_events: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window[1]:
                self._windows[key] = (1, now + self.window_seconds)
                return True
            count, reset_at = window
            if count >= self.max_events:
                return False
            self._windows[key] = (count + 1, reset_at)
            return True


def format_telegram_message(notification: Notification) -> str:
    emoji = _EMOJI.get(notification.notification_type, _DEFAULT_EMOJI)
    name = html.escape(notification.device_name or "Unknown Device")
    device_id = html.escape(notification.device_id)
    return f"{emoji} [{name} ({device_id})]: {html.escape(notification.message)}"


def email_subject(notification_type: str) -> str:
    return _EMAIL_SUBJECTS.get(notification_type, _DEFAULT_SUBJECT)


def _normalize_chat_id(raw_chat_id: str | int) -> int | str:
    value = str(raw_chat_id).strip()
    if not value:
        raise ValueError("telegram_chat_id is empty")
    if value.startswith("@"):
        return value
    if value.lstrip("-").isdigit():
        return int(value)
    return value


class TelegramChannel:
    name = "telegram"

    def __init__(self, bot_factory: Callable[..., Bot] = Bot, rate_limiter: FixedWindowRateLimiter | None = None):
        self._bot_factory = bot_factory
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            settings.TELEGRAM_RATE_LIMIT_MAX,
            settings.TELEGRAM_RATE_LIMIT_WINDOW_SECONDS,
        )

    def configured(self, config: NotificationSettings) -> bool:
        return config.telegram_configured

    async def send(self, config: NotificationSettings, notification: Notification) -> ChannelResult:
        chat_key = config.telegram_chat_id.strip()
        if not self.rate_limiter.allow(chat_key):
            log.warning("Telegram rate limit exceeded for chat %s", chat_key)
            return ChannelResult(self.name, False, "rate_limited")

        try:
            bot = self._bot_factory(token=config.telegram_bot_token.strip())
            try:
                await bot.send_message(
                    chat_id=_normalize_chat_id(chat_key),
                    text=format_telegram_message(notification),
                    parse_mode="HTML",
                )
            finally:
                await bot.session.close()
        except Exception as exc:
            log.error("Telegram delivery failed for %s: %s", notification.device_id, exc)
            return ChannelResult(self.name, False, str(exc))
        return ChannelResult(self.name, True)


def _send_plain_email(to_email: str, subject: str, body: str) -> None:
    msg = MIMEMultipart()
    msg["From"] = settings.SMTP_SENDER or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
        server.ehlo()
        if settings.SMTP_USE_TLS:
            server.starttls()
            server.ehlo()
        if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


class EmailChannel:
    name = "email"

    def __init__(self, transport: Callable[[str, str, str], None] = _send_plain_email):
        self._transport = transport

    def configured(self, config: NotificationSettings) -> bool:
        return config.email_configured

    @staticmethod
    def smtp_configured() -> bool:
        return bool(settings.SMTP_HOST and (settings.SMTP_SENDER or settings.SMTP_USERNAME))

    async def send(self, config: NotificationSettings, notification: Notification) -> ChannelResult:
        if self._transport is _send_plain_email and not self.smtp_configured():
            log.warning("Email notification dropped: SMTP is not configured")
            return ChannelResult(self.name, False, "SMTP is not configured")

        address = config.email_notifications.strip()
        subject = email_subject(notification.notification_type)
        body = (
            f"{notification.message}\n\n"
            f"Device: {notification.device_name} ({notification.device_id})\n"
            f"Type: {notification.notification_type}\n"
        )
        try:
            await asyncio.to_thread(self._transport, address, subject, body)
        except Exception as exc:
            log.error("Email delivery to %s failed: %s", address, exc)
            return ChannelResult(self.name, False, str(exc))
        log.info("Email sent to %s (%s)", address, subject)
        return ChannelResult(self.name, True)


def default_channels() -> list:
    return [TelegramChannel(), EmailChannel()]
