"""Store access for devices, telemetry, settings and cooldowns.

Services depend on this class rather than on ``AsyncSession`` directly, so
they know *what* to load and the repository knows *how*.
"""
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, desc, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.models.device import Device, DeviceApp
from beacon.models.notification import NotificationCooldown, NotificationSettingsRecord
from beacon.models.telemetry import DeviceTelemetry, TelemetryHistory
from beacon.services.telemetry_mapper import as_utc

logger = logging.getLogger(__name__)


class TelemetryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------
    async def get_device_by_android_id(self, android_id: str) -> Device | None:
        result = await self.db.execute(select(Device).where(Device.android_id == android_id))
        return result.scalar_one_or_none()

    async def list_devices(self) -> list[Device]:
        result = await self.db.execute(select(Device).order_by(desc(Device.last_seen)))
        return list(result.scalars().all())

    async def devices_last_seen_before(self, cutoff: datetime) -> list[Device]:
        result = await self.db.execute(
            select(Device).where(Device.last_seen.is_not(None), Device.last_seen < cutoff)
        )
        return list(result.scalars().all())

    async def upsert_device(
        self,
        android_id: str,
        device_name: str,
        manufacturer: str,
        model: str,
        seen_at: datetime,
    ) -> tuple[Device, bool]:
        stmt = pg_insert(Device).values(
            id=uuid.uuid4(),
            android_id=android_id,
            device_name=device_name,
            manufacturer=manufacturer,
            model=model,
            first_seen=seen_at,
            last_seen=seen_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Device.android_id],
            set_={
                "device_name": stmt.excluded.device_name,
                "manufacturer": stmt.excluded.manufacturer,
                "model": stmt.excluded.model,
                "last_seen": stmt.excluded.last_seen,
            },
        ).returning(Device)
        result = await self.db.execute(stmt, execution_options={"populate_existing": True})
        device = result.scalar_one()
        # first_seen is only written by the insert branch
        created = as_utc(device.first_seen) == as_utc(seen_at)
        return device, created

    async def delete_device(self, device: Device) -> dict[str, int]:
        removed: dict[str, int] = {}
        for label, stmt in (
            ("apps", delete(DeviceApp).where(DeviceApp.device_id == device.id)),
            ("structured", delete(DeviceTelemetry).where(DeviceTelemetry.device_id == device.id)),
            ("history", delete(TelemetryHistory).where(TelemetryHistory.device_id == device.id)),
            ("cooldowns", delete(NotificationCooldown).where(NotificationCooldown.device_id == device.android_id)),
        ):
            result = await self.db.execute(stmt)
            removed[label] = int(result.rowcount or 0)
        await self.db.execute(delete(Device).where(Device.id == device.id))
        return removed

    # ------------------------------------------------------------------
    # Telemetry writes
    # ------------------------------------------------------------------
    async def add_history(self, device_id: uuid.UUID, telemetry_data: dict[str, Any], timestamp: datetime) -> None:
        self.db.add(TelemetryHistory(device_id=device_id, telemetry_data=telemetry_data, timestamp=timestamp))
        await self.db.flush()

    async def add_structured(self, device_id: uuid.UUID, columns: dict[str, Any], timestamp: datetime) -> None:
        self.db.add(DeviceTelemetry(device_id=device_id, timestamp=timestamp, **columns))
        await self.db.flush()

    async def upsert_apps(self, device_id: uuid.UUID, packages: list[str]) -> int:
        rows = [{"id": uuid.uuid4(), "device_id": device_id, "app_package": pkg} for pkg in packages]
        if not rows:
            return 0
        stmt = pg_insert(DeviceApp).values(rows).on_conflict_do_nothing(
            index_elements=["device_id", "app_package"]
        )
        async with self.db.begin_nested():
            result = await self.db.execute(stmt)
        return int(result.rowcount or 0)

    async def purge_telemetry_before(self, cutoff: datetime) -> dict[str, int]:
        history = await self.db.execute(delete(TelemetryHistory).where(TelemetryHistory.timestamp < cutoff))
        structured = await self.db.execute(delete(DeviceTelemetry).where(DeviceTelemetry.timestamp < cutoff))
        return {"history": int(history.rowcount or 0), "structured": int(structured.rowcount or 0)}

    # ------------------------------------------------------------------
    # Telemetry reads
    # ------------------------------------------------------------------
    async def latest_structured(self, device_id: uuid.UUID) -> DeviceTelemetry | None:
        result = await self.db.execute(
            select(DeviceTelemetry)
            .where(DeviceTelemetry.device_id == device_id)
            .order_by(desc(DeviceTelemetry.timestamp))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_history(self, device_id: uuid.UUID) -> TelemetryHistory | None:
        result = await self.db.execute(
            select(TelemetryHistory)
            .where(TelemetryHistory.device_id == device_id)
            .order_by(desc(TelemetryHistory.timestamp))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_telemetry_timestamp(self, device_id: uuid.UUID) -> datetime | None:
        structured = await self.db.execute(
            select(func.max(DeviceTelemetry.timestamp)).where(DeviceTelemetry.device_id == device_id)
        )
        history = await self.db.execute(
            select(func.max(TelemetryHistory.timestamp)).where(TelemetryHistory.device_id == device_id)
        )
        candidates = [ts for ts in (structured.scalar(), history.scalar()) if ts is not None]
        return max(candidates) if candidates else None

    async def list_structured(self, device_id: uuid.UUID, limit: int) -> list[DeviceTelemetry]:
        result = await self.db.execute(
            select(DeviceTelemetry)
            .where(DeviceTelemetry.device_id == device_id)
            .order_by(desc(DeviceTelemetry.timestamp))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_history(self, device_id: uuid.UUID, limit: int) -> list[TelemetryHistory]:
        result = await self.db.execute(
            select(TelemetryHistory)
            .where(TelemetryHistory.device_id == device_id)
            .order_by(desc(TelemetryHistory.timestamp))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def latest_structured_per_device(self) -> list[tuple[Device, DeviceTelemetry]]:
        latest = (
            select(DeviceTelemetry.device_id, func.max(DeviceTelemetry.timestamp).label("ts"))
            .group_by(DeviceTelemetry.device_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Device, DeviceTelemetry)
            .join(DeviceTelemetry, DeviceTelemetry.device_id == Device.id)
            .join(latest, and_(latest.c.device_id == DeviceTelemetry.device_id, latest.c.ts == DeviceTelemetry.timestamp))
        )
        return [(row[0], row[1]) for row in result.all()]

    async def latest_history_per_device(self) -> list[tuple[Device, TelemetryHistory]]:
        latest = (
            select(TelemetryHistory.device_id, func.max(TelemetryHistory.timestamp).label("ts"))
            .group_by(TelemetryHistory.device_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Device, TelemetryHistory)
            .join(TelemetryHistory, TelemetryHistory.device_id == Device.id)
            .join(latest, and_(latest.c.device_id == TelemetryHistory.device_id, latest.c.ts == TelemetryHistory.timestamp))
        )
        return [(row[0], row[1]) for row in result.all()]

    # ------------------------------------------------------------------
    # Settings and cooldowns
    # ------------------------------------------------------------------
    async def get_settings_record(self) -> NotificationSettingsRecord | None:
        result = await self.db.execute(
            select(NotificationSettingsRecord).order_by(NotificationSettingsRecord.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def save_settings_record(self, values: dict[str, Any]) -> NotificationSettingsRecord:
        record = await self.get_settings_record()
        if record is None:
            record = NotificationSettingsRecord()
            self.db.add(record)
        for key, value in values.items():
            setattr(record, key, value)
        await self.db.flush()
        await self.db.commit()
        return record

    async def get_cooldown(self, device_id: str, notification_type: str) -> datetime | None:
        result = await self.db.execute(
            select(NotificationCooldown.last_sent_at).where(
                NotificationCooldown.device_id == device_id,
                NotificationCooldown.notification_type == notification_type,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_cooldown(self, device_id: str, notification_type: str, sent_at: datetime) -> None:
        stmt = pg_insert(NotificationCooldown).values(
            device_id=device_id,
            notification_type=notification_type,
            last_sent_at=sent_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["device_id", "notification_type"],
            set_={"last_sent_at": stmt.excluded.last_sent_at},
        )
        await self.db.execute(stmt)
        await self.db.commit()
