from typing import Any

from pydantic import BaseModel, Field


class DeviceStatus(BaseModel):
    id: str
    android_id: str
    name: str
    model: str
    manufacturer: str
    os_version: str
    battery_level: int | float
    battery_status: str
    network_type: str
    ip_address: str
    uptime_millis: int | float
    last_seen: int
    is_online: bool = Field(serialization_alias="isOnline")
    telemetry: dict[str, Any] | None = None


class DeviceHistoryItem(BaseModel):
    source: str
    timestamp: str | None
    telemetry: dict[str, Any]


class DeviceDeleteResponse(BaseModel):
    success: bool
    android_id: str
    removed: dict[str, int]
