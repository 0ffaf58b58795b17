import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base


class BatteryStatus(str, enum.Enum):
    CHARGING = "Charging"
    DISCHARGING = "Discharging"
    FULL = "Full"
    NOT_CHARGING = "Not Charging"
    UNKNOWN = "Unknown"


class NetworkType(str, enum.Enum):
    WIFI = "WiFi"
    MOBILE = "Mobile"
    ETHERNET = "Ethernet"
    NONE = "None"
    UNKNOWN = "Unknown"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class DeviceTelemetry(Base):
    """One flattened snapshot per row."""

    __tablename__ = "device_telemetry"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    device_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("devices.id", ondelete="CASCADE"), index=True
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Device info
    device_name: Mapped[str | None] = mapped_column(String(255))
    manufacturer: Mapped[str | None] = mapped_column(String(128))
    brand: Mapped[str | None] = mapped_column(String(128))
    model: Mapped[str | None] = mapped_column(String(128))
    product: Mapped[str | None] = mapped_column(String(128))
    android_id: Mapped[str | None] = mapped_column(String(128))
    imei: Mapped[str | None] = mapped_column(String(64))
    is_emulator: Mapped[bool | None] = mapped_column(Boolean)

    # System info
    android_version: Mapped[str | None] = mapped_column(String(32))
    sdk_int: Mapped[int | None] = mapped_column(Integer)
    base_version: Mapped[int | None] = mapped_column(Integer)
    fingerprint: Mapped[str | None] = mapped_column(Text)
    build_number: Mapped[str | None] = mapped_column(String(255))
    kernel_version: Mapped[str | None] = mapped_column(String(255))
    bootloader: Mapped[str | None] = mapped_column(String(128))
    build_tags: Mapped[str | None] = mapped_column(String(128))
    build_type: Mapped[str | None] = mapped_column(String(64))
    board: Mapped[str | None] = mapped_column(String(128))
    hardware: Mapped[str | None] = mapped_column(String(128))
    host: Mapped[str | None] = mapped_column(String(255))
    user_name: Mapped[str | None] = mapped_column(String(128))
    uptime_millis: Mapped[int | None] = mapped_column(BigInteger)
    boot_time: Mapped[int | None] = mapped_column(BigInteger)
    cpu_cores: Mapped[int | None] = mapped_column(Integer)
    language: Mapped[str | None] = mapped_column(String(32))
    timezone: Mapped[str | None] = mapped_column(String(64))

    # Battery info
    battery_level: Mapped[int | None] = mapped_column(Integer)
    battery_status: Mapped[BatteryStatus | None] = mapped_column(
        Enum(BatteryStatus, name="battery_status", values_callable=_enum_values)
    )

    # Network info
    ip_address: Mapped[str | None] = mapped_column(String(64))
    network_interface: Mapped[NetworkType | None] = mapped_column(
        Enum(NetworkType, name="network_type", values_callable=_enum_values)
    )
    carrier: Mapped[str | None] = mapped_column(String(128))
    wifi_ssid: Mapped[str | None] = mapped_column(String(128))

    # Display info
    screen_resolution: Mapped[str | None] = mapped_column(String(32))
    screen_orientation: Mapped[str | None] = mapped_column(String(32))

    # Security info
    is_rooted: Mapped[bool | None] = mapped_column(Boolean)

    os_type: Mapped[str | None] = mapped_column(String(32))

    __table_args__ = (
        Index("ix_device_telemetry_device_timestamp", "device_id", "timestamp"),
    )


class TelemetryHistory(Base):
    """Raw submissions, one JSON blob per row."""

    __tablename__ = "telemetry_history"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    device_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("devices.id", ondelete="CASCADE"), index=True
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    telemetry_data: Mapped[dict] = mapped_column(JSON)

    __table_args__ = (
        Index("ix_telemetry_history_device_timestamp", "device_id", "timestamp"),
    )
