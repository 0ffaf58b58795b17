import asyncio
import logging

from sqlalchemy import inspect, select, text

from beacon.core.config import settings
from beacon.core.database import Base, async_session, engine
from beacon.core.security import hash_password
from beacon.models.admin import Admin
from beacon.models import device, notification, telemetry  # noqa: F401  (register tables)

logger = logging.getLogger(__name__)

SCHEMA_SETUP_LOCK_ID = 1

_SCHEMA_INIT_LOCK = asyncio.Lock()
_SCHEMA_READY = False


def _get_existing_tables(connection) -> set[str]:
    return set(inspect(connection).get_table_names())


async def ensure_base_schema_ready(force: bool = False) -> bool:
    """Create missing ORM tables once per process.

    Returns True when every table in the metadata exists afterwards.
    """
    global _SCHEMA_READY
    if _SCHEMA_READY and not force:
        return True

    async with _SCHEMA_INIT_LOCK:
        if _SCHEMA_READY and not force:
            return True

        async with engine.begin() as conn:
            await conn.execute(text(f"SELECT pg_advisory_lock({SCHEMA_SETUP_LOCK_ID})"))
            try:
                await conn.run_sync(lambda sync_conn: Base.metadata.create_all(bind=sync_conn, checkfirst=True))
            finally:
                await conn.execute(text(f"SELECT pg_advisory_unlock({SCHEMA_SETUP_LOCK_ID})"))

        async with engine.connect() as conn:
            existing = await conn.run_sync(_get_existing_tables)

        missing = sorted(set(Base.metadata.tables) - existing)
        if missing:
            logger.warning("schema bootstrap incomplete, missing tables: %s", ",".join(missing))
            return False

        _SCHEMA_READY = True
        return True


async def ensure_admin_account() -> None:
    async with async_session() as db:
        result = await db.execute(select(Admin).where(Admin.username == settings.ADMIN_USERNAME))
        if result.scalar_one_or_none() is None:
            db.add(Admin(username=settings.ADMIN_USERNAME, password_hash=hash_password(settings.ADMIN_PASSWORD)))
            await db.commit()
            logger.info("Seeded admin account %s", settings.ADMIN_USERNAME)
