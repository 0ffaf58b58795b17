from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_OFFLINE_THRESHOLD_MINUTES = 15
DEFAULT_BATTERY_THRESHOLD_PERCENT = 20

NOTIFICATION_TYPES = ("device_offline", "low_battery", "security_issue", "new_device")

# notification type -> settings flag
_ENABLE_FLAGS = {
    "device_offline": "notify_device_offline",
    "low_battery": "notify_low_battery",
    "security_issue": "notify_security_issues",
    "new_device": "notify_new_device",
}


class ThresholdSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    offline_threshold: int = DEFAULT_OFFLINE_THRESHOLD_MINUTES
    battery_threshold: int = DEFAULT_BATTERY_THRESHOLD_PERCENT


class NotificationSettings(BaseModel):
    notify_device_offline: bool = True
    notify_low_battery: bool = True
    notify_security_issues: bool = False
    notify_new_device: bool = True
    email_notifications: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    additional_settings: ThresholdSettings = Field(default_factory=ThresholdSettings)

    def is_enabled(self, notification_type: str) -> bool:
        flag = _ENABLE_FLAGS.get(notification_type)
        if flag is None:
            return False
        return bool(getattr(self, flag))

    @property
    def telegram_configured(self) -> bool:
        return bool((self.telegram_bot_token or "").strip() and (self.telegram_chat_id or "").strip())

    @property
    def email_configured(self) -> bool:
        return bool((self.email_notifications or "").strip())


class NotificationSettingsUpdate(BaseModel):
    notify_device_offline: bool | None = None
    notify_low_battery: bool | None = None
    notify_security_issues: bool | None = None
    notify_new_device: bool | None = None
    email_notifications: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    additional_settings: dict[str, Any] | None = None


class TestNotificationRequest(BaseModel):
    message: str = "This is a test notification"


class ChannelResultOut(BaseModel):
    channel: str
    success: bool
    error: str | None = None


class TestNotificationResponse(BaseModel):
    delivered: bool
    results: list[ChannelResultOut]
