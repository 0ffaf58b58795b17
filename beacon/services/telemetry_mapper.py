"""Pure adapters between the two telemetry representations and the dashboard view.

Structured rows (``device_telemetry``) and raw history blobs
(``telemetry_history``) describe the same snapshot. Everything here is free of
I/O so the HTTP handlers, the monitors and the tests share one algorithm.
"""
import enum
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from beacon.models.telemetry import BatteryStatus, NetworkType
from beacon.schemas.device import DeviceStatus
from beacon.services.json_paths import safely_get_nested_property

logger = logging.getLogger(__name__)

SOURCE_STRUCTURED = "structured"
SOURCE_HISTORY = "history"

# (snapshot section, snapshot key, column name)
_FIELD_MAP: tuple[tuple[str, str, str], ...] = (
    ("device_info", "device_name", "device_name"),
    ("device_info", "manufacturer", "manufacturer"),
    ("device_info", "brand", "brand"),
    ("device_info", "model", "model"),
    ("device_info", "product", "product"),
    ("device_info", "android_id", "android_id"),
    ("device_info", "imei", "imei"),
    ("device_info", "is_emulator", "is_emulator"),
    ("system_info", "android_version", "android_version"),
    ("system_info", "sdk_int", "sdk_int"),
    ("system_info", "base_version", "base_version"),
    ("system_info", "fingerprint", "fingerprint"),
    ("system_info", "build_number", "build_number"),
    ("system_info", "kernel_version", "kernel_version"),
    ("system_info", "bootloader", "bootloader"),
    ("system_info", "build_tags", "build_tags"),
    ("system_info", "build_type", "build_type"),
    ("system_info", "board", "board"),
    ("system_info", "hardware", "hardware"),
    ("system_info", "host", "host"),
    ("system_info", "user", "user_name"),
    ("system_info", "uptime_millis", "uptime_millis"),
    ("system_info", "boot_time", "boot_time"),
    ("system_info", "cpu_cores", "cpu_cores"),
    ("system_info", "language", "language"),
    ("system_info", "timezone", "timezone"),
    ("battery_info", "battery_level", "battery_level"),
    ("battery_info", "battery_status", "battery_status"),
    ("network_info", "ip_address", "ip_address"),
    ("network_info", "network_interface", "network_interface"),
    ("network_info", "carrier", "carrier"),
    ("network_info", "wifi_ssid", "wifi_ssid"),
    ("display_info", "screen_resolution", "screen_resolution"),
    ("display_info", "screen_orientation", "screen_orientation"),
    ("security_info", "is_rooted", "is_rooted"),
)

_SECTIONS = ("device_info", "system_info", "battery_info", "network_info", "display_info", "security_info")

_INT_COLUMNS = frozenset({"sdk_int", "base_version", "uptime_millis", "boot_time", "cpu_cores", "battery_level"})
_BOOL_COLUMNS = frozenset({"is_emulator", "is_rooted"})


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _coerce_enum(enum_cls: type[enum.Enum], value: Any) -> enum.Enum:
    if isinstance(value, enum_cls):
        return value
    text = str(value or "").strip().replace("_", " ").lower()
    for member in enum_cls:
        if member.value.lower() == text:
            return member
    return enum_cls("Unknown")


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_number(value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def _as_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def structured_row_to_snapshot(row: Any) -> dict[str, Any]:
    snapshot: dict[str, Any] = {section: {} for section in _SECTIONS}
    for section, key, column in _FIELD_MAP:
        snapshot[section][key] = _plain(getattr(row, column, None))
    snapshot["os_type"] = getattr(row, "os_type", None)
    return snapshot


def snapshot_to_structured_columns(snapshot: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for section, key, column in _FIELD_MAP:
        value = safely_get_nested_property(snapshot, [section, key])
        if column in _INT_COLUMNS:
            value = _as_int(value)
        elif column in _BOOL_COLUMNS:
            value = _as_bool(value)
        elif value is not None and not isinstance(value, str):
            value = str(value)
        columns[column] = value

    columns["battery_status"] = _coerce_enum(BatteryStatus, columns["battery_status"])
    columns["network_interface"] = _coerce_enum(NetworkType, columns["network_interface"])
    os_type = snapshot.get("os_type")
    columns["os_type"] = str(os_type) if os_type is not None else None
    return columns


def history_blob(row: Any) -> dict[str, Any] | None:
    data = getattr(row, "telemetry_data", None)
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError:
            logger.warning("History row %s holds unparseable telemetry", getattr(row, "id", None))
            return None
    return data if isinstance(data, dict) else None


def pick_current_source(structured: Any | None, history: Any | None) -> str | None:
    """Return which row is current. Ties go to the structured row."""
    if structured is None and history is None:
        return None
    if history is None:
        return SOURCE_STRUCTURED
    if structured is None:
        return SOURCE_HISTORY
    structured_ts = as_utc(structured.timestamp)
    history_ts = as_utc(history.timestamp)
    if history_ts is None:
        return SOURCE_STRUCTURED
    if structured_ts is None:
        return SOURCE_HISTORY
    return SOURCE_STRUCTURED if structured_ts >= history_ts else SOURCE_HISTORY


def select_current_snapshot(structured: Any | None, history: Any | None) -> dict[str, Any] | None:
    source = pick_current_source(structured, history)
    if source == SOURCE_STRUCTURED:
        return structured_row_to_snapshot(structured)
    if source == SOURCE_HISTORY:
        return history_blob(history)
    return None


def _epoch_millis(value: datetime | None) -> int:
    value = as_utc(value)
    if value is None:
        return 0
    return int(value.timestamp() * 1000)


def derive_network_type(snapshot: Any) -> str:
    declared = safely_get_nested_property(snapshot, ["network_info", "network_interface"])
    if declared:
        return str(declared)
    if safely_get_nested_property(snapshot, ["network_info", "wifi_ip"]):
        return NetworkType.WIFI.value
    if safely_get_nested_property(snapshot, ["network_info", "mobile_ip"]):
        return NetworkType.MOBILE.value
    if safely_get_nested_property(snapshot, ["network_info", "ethernet_ip"]):
        return NetworkType.ETHERNET.value
    return NetworkType.UNKNOWN.value


def derive_ip_address(snapshot: Any) -> str:
    for key in ("ethernet_ip", "wifi_ip", "mobile_ip", "ip_address"):
        value = safely_get_nested_property(snapshot, ["network_info", key])
        if value:
            return str(value)
    return "0.0.0.0"


def derive_device_status(
    device: Any,
    snapshot: dict[str, Any] | None,
    offline_threshold_minutes: int | float,
    now: datetime | None = None,
) -> DeviceStatus:
    now = as_utc(now) or datetime.now(timezone.utc)
    last_seen = as_utc(getattr(device, "last_seen", None))
    is_online = last_seen is not None and (now - last_seen) < timedelta(minutes=float(offline_threshold_minutes))

    return DeviceStatus(
        id=str(device.id),
        android_id=device.android_id,
        name=device.device_name or "Unknown Device",
        model=device.model or "Unknown Model",
        manufacturer=device.manufacturer or "Unknown Manufacturer",
        os_version=str(safely_get_nested_property(snapshot, ["system_info", "android_version"], "Unknown")),
        battery_level=_as_number(safely_get_nested_property(snapshot, ["battery_info", "battery_level"], 0)),
        battery_status=str(safely_get_nested_property(snapshot, ["battery_info", "battery_status"], "Unknown")),
        network_type=derive_network_type(snapshot),
        ip_address=derive_ip_address(snapshot),
        uptime_millis=_as_number(safely_get_nested_property(snapshot, ["system_info", "uptime_millis"], 0)),
        last_seen=_epoch_millis(last_seen),
        is_online=is_online,
        telemetry=snapshot,
    )
