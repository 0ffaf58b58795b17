from __future__ import annotations

import asyncio
import logging
import signal

from beacon.core.config import settings
from beacon.core.database import engine
from beacon.core.logging_setup import setup_logging
from beacon.services.db_maintenance import background_db_maintenance
from beacon.services.device_monitor import background_device_monitor
from beacon.services.schema_bootstrap import ensure_base_schema_ready

setup_logging()
logger = logging.getLogger(__name__)


async def _bootstrap_schema() -> None:
    created = await ensure_base_schema_ready()
    if not created:
        raise RuntimeError("Schema bootstrap failed")


async def _run_worker(role: str, stop_event: asyncio.Event) -> None:
    if role == "device_monitor":
        logger.info("Starting worker role=device_monitor interval=%ss", settings.MONITOR_INTERVAL_SECONDS)
        await background_device_monitor(stop_event)
        return
    if role == "db_maintenance":
        logger.info("Starting worker role=db_maintenance interval=%ss", settings.RETENTION_INTERVAL_SECONDS)
        await background_db_maintenance(stop_event)
        return
    raise RuntimeError(f"Unknown WORKER_ROLE={role}")


async def _amain() -> None:
    role = (settings.WORKER_ROLE or "").strip().lower()
    if not role:
        raise RuntimeError("WORKER_ROLE is required for worker container")

    await _bootstrap_schema()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    task = asyncio.create_task(_run_worker(role, stop_event))
    try:
        await task
    finally:
        stop_event.set()
        task.cancel()
        await engine.dispose()


def main() -> None:
    asyncio.run(_amain())


if __name__ == "__main__":
    main()
