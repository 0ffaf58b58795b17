import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from beacon.core.config import settings
from beacon.core.ttl_cache import TTLCache
from beacon.schemas.notification import (
    DEFAULT_BATTERY_THRESHOLD_PERCENT,
    DEFAULT_OFFLINE_THRESHOLD_MINUTES,
    NotificationSettings,
    NotificationSettingsUpdate,
    ThresholdSettings,
)
from beacon.services.json_paths import safely_get_nested_property

logger = logging.getLogger(__name__)

_CACHE_KEY = "notification_settings"
_FLAG_FIELDS = ("notify_device_offline", "notify_low_battery", "notify_security_issues", "notify_new_device")
_TEXT_FIELDS = ("email_notifications", "telegram_bot_token", "telegram_chat_id")


def _positive_number(value: Any, default: int) -> int:
    if not value or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _additional_dict(raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return dict(raw) if isinstance(raw, dict) else {}


def record_to_settings(record: Any) -> NotificationSettings:
    if record is None:
        return NotificationSettings()

    defaults = NotificationSettings()
    values: dict[str, Any] = {}
    for field in _FLAG_FIELDS:
        flag = getattr(record, field, None)
        values[field] = getattr(defaults, field) if flag is None else bool(flag)
    for field in _TEXT_FIELDS:
        text = getattr(record, field, None)
        values[field] = text.strip() if isinstance(text, str) and text.strip() else None

    raw_additional = getattr(record, "additional_settings", None)
    extra = _additional_dict(raw_additional)
    extra["offline_threshold"] = _positive_number(
        safely_get_nested_property(raw_additional, ["offline_threshold"]),
        DEFAULT_OFFLINE_THRESHOLD_MINUTES,
    )
    extra["battery_threshold"] = _positive_number(
        safely_get_nested_property(raw_additional, ["battery_threshold"]),
        DEFAULT_BATTERY_THRESHOLD_PERCENT,
    )
    values["additional_settings"] = ThresholdSettings(**extra)
    return NotificationSettings(**values)


class SettingsResolver:
    """Resolves notification settings and thresholds behind a TTL cache.

    A missing settings row resolves to defaults, which are cached like any
    stored row. A failing store also resolves to defaults but is not cached,
    so the next call goes back to the store.
    """

    def __init__(self, cache: TTLCache | None = None):
        self.cache = cache or TTLCache(settings.SETTINGS_CACHE_TTL_SECONDS)

    def clear_cache(self) -> None:
        self.cache.invalidate()

    async def get_notification_settings(self, repo) -> NotificationSettings:
        cached = self.cache.get(_CACHE_KEY)
        if cached is not None:
            return cached

        try:
            record = await repo.get_settings_record()
        except Exception as exc:
            logger.error("Failed to load notification settings, using defaults: %s", exc)
            await _safe_rollback(repo)
            return NotificationSettings()

        resolved = record_to_settings(record)
        self.cache.set(_CACHE_KEY, resolved)
        return resolved

    async def get_offline_threshold(self, repo) -> int:
        resolved = await self.get_notification_settings(repo)
        return resolved.additional_settings.offline_threshold

    async def get_battery_threshold(self, repo) -> int:
        resolved = await self.get_notification_settings(repo)
        return resolved.additional_settings.battery_threshold

    async def save_notification_settings(self, repo, update: NotificationSettingsUpdate) -> NotificationSettings:
        current = await repo.get_settings_record()
        values = update.model_dump(exclude_unset=True)

        if "additional_settings" in values:
            merged = _additional_dict(getattr(current, "additional_settings", None))
            merged.update(values["additional_settings"] or {})
            values["additional_settings"] = merged
        for field in _TEXT_FIELDS:
            if field in values and isinstance(values[field], str):
                values[field] = values[field].strip() or None

        record = await repo.save_settings_record(values)
        self.clear_cache()
        logger.info("Notification settings saved (fields=%s)", sorted(values))
        return record_to_settings(record)


async def _safe_rollback(repo) -> None:
    try:
        await repo.rollback()
    except SQLAlchemyError as exc:
        logger.warning("Rollback after settings failure failed: %s", exc)


settings_resolver = SettingsResolver()
