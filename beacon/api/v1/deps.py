from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.database import get_db
from beacon.services.telemetry_repository import TelemetryRepository


async def get_repository(db: AsyncSession = Depends(get_db)) -> TelemetryRepository:
    return TelemetryRepository(db)
