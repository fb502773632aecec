"""
Scheduler Runner

Runs the Front sync scheduler as a standalone process.
"""

import asyncio
import signal

import structlog

from frontsync.client.front import FrontClient
from frontsync.config import get_settings
from frontsync.log import configure_logging
from frontsync.monitoring.health import HealthMonitor
from frontsync.monitoring.state_store import build_state_store
from frontsync.scheduling.scheduler import SyncScheduler
from frontsync.storage.db import close_db, init_db
from frontsync.storage.sql import get_sync_store
from frontsync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()


async def _run() -> None:
    settings = get_settings()
    configure_logging(settings)
    await init_db(create_tables=True)

    store = get_sync_store()
    monitor = HealthMonitor.from_settings(settings, build_state_store(settings), store)
    client = FrontClient.from_settings(settings, monitor=monitor)
    orchestrator = SyncOrchestrator(client, store, monitor, settings=settings)
    scheduler = SyncScheduler(orchestrator, store, monitor, settings=settings)

    await scheduler.start()
    logger.info("Scheduler runner started")

    # Sleep forever until signal
    stop_event = asyncio.Event()

    def _handle_signal(*_args):
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    try:
        await stop_event.wait()
    finally:
        await scheduler.shutdown()
        await client.aclose()
        await close_db()
        logger.info("Scheduler runner stopped")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
