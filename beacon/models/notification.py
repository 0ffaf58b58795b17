import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base


class NotificationSettingsRecord(Base):
    __tablename__ = "notification_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notify_device_offline: Mapped[bool | None] = mapped_column(Boolean, default=True)
    notify_low_battery: Mapped[bool | None] = mapped_column(Boolean, default=True)
    notify_security_issues: Mapped[bool | None] = mapped_column(Boolean, default=False)
    notify_new_device: Mapped[bool | None] = mapped_column(Boolean, default=True)
    email_notifications: Mapped[str | None] = mapped_column(String(255))
    telegram_bot_token: Mapped[str | None] = mapped_column(Text)
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64))
    # offline_threshold (minutes), battery_threshold (percent) and general settings
    additional_settings: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class NotificationCooldown(Base):
    __tablename__ = "notification_cooldowns"

    # Device-reported android_id, the same identifier notifications are addressed by.
    device_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    notification_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
