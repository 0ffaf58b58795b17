import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from beacon.models.device import Device
from beacon.models.notification import NotificationSettingsRecord
from beacon.models.telemetry import DeviceTelemetry, TelemetryHistory


def utc(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def store_error(name):
    return OperationalError(f"SELECT /* {name} */", {}, Exception("connection refused"))


class FakeRepository:
    """In-memory stand-in for TelemetryRepository.

    ``fail_on`` holds method names that raise a store error when called.
    """

    def __init__(self):
        self.devices = {}
        self.structured = []
        self.history = []
        self.apps = set()
        self.settings_record = None
        self.cooldowns = {}
        self.fail_on = set()
        self.calls = []
        self.commits = 0
        self.rollbacks = 0

    def _enter(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise store_error(name)

    # helpers for arranging state
    def add_device(self, android_id, last_seen=None, device_name=None, manufacturer=None, model=None):
        device = Device(
            id=uuid.uuid4(),
            android_id=android_id,
            device_name=device_name,
            manufacturer=manufacturer,
            model=model,
            first_seen=last_seen,
            last_seen=last_seen,
        )
        self.devices[android_id] = device
        return device

    def add_structured_row(self, device, timestamp, **columns):
        row = DeviceTelemetry(id=uuid.uuid4(), device_id=device.id, timestamp=timestamp, **columns)
        self.structured.append(row)
        return row

    def add_history_row(self, device, timestamp, telemetry_data):
        row = TelemetryHistory(id=uuid.uuid4(), device_id=device.id, timestamp=timestamp, telemetry_data=telemetry_data)
        self.history.append(row)
        return row

    def _device_by_id(self, device_id):
        for device in self.devices.values():
            if device.id == device_id:
                return device
        return None

    async def commit(self):
        self._enter("commit")
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1

    async def get_device_by_android_id(self, android_id):
        self._enter("get_device_by_android_id")
        return self.devices.get(android_id)

    async def list_devices(self):
        self._enter("list_devices")
        return list(self.devices.values())

    async def devices_last_seen_before(self, cutoff):
        self._enter("devices_last_seen_before")
        return [d for d in self.devices.values() if d.last_seen is not None and d.last_seen < cutoff]

    async def upsert_device(self, android_id, device_name, manufacturer, model, seen_at):
        self._enter("upsert_device")
        device = self.devices.get(android_id)
        created = device is None
        if created:
            device = self.add_device(android_id, last_seen=seen_at)
        device.device_name = device_name
        device.manufacturer = manufacturer
        device.model = model
        device.last_seen = seen_at
        return device, created

    async def delete_device(self, device):
        self._enter("delete_device")
        removed = {
            "apps": len([a for a in self.apps if a[0] == device.id]),
            "structured": len([r for r in self.structured if r.device_id == device.id]),
            "history": len([r for r in self.history if r.device_id == device.id]),
            "cooldowns": len([k for k in self.cooldowns if k[0] == device.android_id]),
        }
        self.apps = {a for a in self.apps if a[0] != device.id}
        self.structured = [r for r in self.structured if r.device_id != device.id]
        self.history = [r for r in self.history if r.device_id != device.id]
        self.cooldowns = {k: v for k, v in self.cooldowns.items() if k[0] != device.android_id}
        self.devices.pop(device.android_id, None)
        return removed

    async def add_history(self, device_id, telemetry_data, timestamp):
        self._enter("add_history")
        self.history.append(TelemetryHistory(id=uuid.uuid4(), device_id=device_id, timestamp=timestamp, telemetry_data=telemetry_data))

    async def add_structured(self, device_id, columns, timestamp):
        self._enter("add_structured")
        self.structured.append(DeviceTelemetry(id=uuid.uuid4(), device_id=device_id, timestamp=timestamp, **columns))

    async def upsert_apps(self, device_id, packages):
        self._enter("upsert_apps")
        before = len(self.apps)
        self.apps.update((device_id, pkg) for pkg in packages)
        return len(self.apps) - before

    async def purge_telemetry_before(self, cutoff):
        self._enter("purge_telemetry_before")
        history = [r for r in self.history if r.timestamp < cutoff]
        structured = [r for r in self.structured if r.timestamp < cutoff]
        self.history = [r for r in self.history if r.timestamp >= cutoff]
        self.structured = [r for r in self.structured if r.timestamp >= cutoff]
        return {"history": len(history), "structured": len(structured)}

    @staticmethod
    def _latest(rows, device_id):
        rows = [r for r in rows if r.device_id == device_id]
        return max(rows, key=lambda r: r.timestamp) if rows else None

    async def latest_structured(self, device_id):
        self._enter("latest_structured")
        return self._latest(self.structured, device_id)

    async def latest_history(self, device_id):
        self._enter("latest_history")
        return self._latest(self.history, device_id)

    async def latest_telemetry_timestamp(self, device_id):
        self._enter("latest_telemetry_timestamp")
        stamps = [r.timestamp for r in self.structured + self.history if r.device_id == device_id]
        return max(stamps) if stamps else None

    async def list_structured(self, device_id, limit):
        self._enter("list_structured")
        rows = sorted((r for r in self.structured if r.device_id == device_id), key=lambda r: r.timestamp, reverse=True)
        return rows[:limit]

    async def list_history(self, device_id, limit):
        self._enter("list_history")
        rows = sorted((r for r in self.history if r.device_id == device_id), key=lambda r: r.timestamp, reverse=True)
        return rows[:limit]

    def _latest_per_device(self, rows):
        newest = {}
        for row in rows:
            if row.device_id not in newest or row.timestamp > newest[row.device_id]:
                newest[row.device_id] = row.timestamp
        # ties on the max timestamp all come back, like the SQL join does
        return [
            (self._device_by_id(row.device_id), row)
            for row in rows
            if row.timestamp == newest[row.device_id] and self._device_by_id(row.device_id) is not None
        ]

    async def latest_structured_per_device(self):
        self._enter("latest_structured_per_device")
        return self._latest_per_device(self.structured)

    async def latest_history_per_device(self):
        self._enter("latest_history_per_device")
        return self._latest_per_device(self.history)

    async def get_settings_record(self):
        self._enter("get_settings_record")
        return self.settings_record

    async def save_settings_record(self, values):
        self._enter("save_settings_record")
        if self.settings_record is None:
            self.settings_record = NotificationSettingsRecord(id=uuid.uuid4())
        for key, value in values.items():
            setattr(self.settings_record, key, value)
        self.commits += 1
        return self.settings_record

    async def get_cooldown(self, device_id, notification_type):
        self._enter("get_cooldown")
        return self.cooldowns.get((device_id, notification_type))

    async def upsert_cooldown(self, device_id, notification_type, sent_at):
        self._enter("upsert_cooldown")
        self.cooldowns[(device_id, notification_type)] = sent_at
        self.commits += 1
