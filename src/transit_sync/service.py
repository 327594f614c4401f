import asyncio
import signal
from typing import Optional

import aiohttp

from transit_sync.database.database_utils import DatabaseManager
from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.decode_worker import DecodeWorker
from transit_sync.ingestion.freshness import FreshnessStore, JsonFileBackend
from transit_sync.runtime_utils.local_files import (
    DECODE_WORKERS,
    FRESHNESS_FILE,
    GTFS_DB_PATH,
    REALTIME_POLL_PERIOD,
    SCHEDULE_SYNC_PERIOD,
)
from transit_sync.runtime_utils.process_logger import ProcessLogger
from transit_sync.sources import nsw


def period_or_default(configured: str, default: float) -> float:
    """period from the environment, or the default of the group when unset"""
    if configured == "":
        return default
    return float(configured)


async def main(stop_event: Optional[asyncio.Event] = None) -> None:
    """
    run every source group until stop_event is set

    * build the shared http session, database, freshness store and decode
      worker
    * start each group: one sync and one poll per source
    * start the recurring sync and poll timers
    * on SIGTERM or SIGINT, stop the timers, wait for running pipelines and
      release the shared resources
    """
    process_logger = ProcessLogger("main")
    process_logger.log_start()

    if stop_event is None:
        stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signal_number in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signal_number, stop_event.set)

    db_manager = DatabaseManager(GTFS_DB_PATH)
    freshness = FreshnessStore(JsonFileBackend(FRESHNESS_FILE))
    worker = DecodeWorker(max_workers=int(DECODE_WORKERS) if DECODE_WORKERS else None)

    try:
        async with aiohttp.ClientSession() as session:
            context = IngestionContext(
                session=session,
                db_manager=db_manager,
                freshness=freshness,
                worker=worker,
            )

            group = nsw.build_nsw_group(context)
            group.start()
            group.start_auto_sync(period_or_default(SCHEDULE_SYNC_PERIOD, nsw.SYNC_PERIOD_SECONDS))
            group.start_auto_poll(period_or_default(REALTIME_POLL_PERIOD, nsw.POLL_PERIOD_SECONDS))

            process_logger.add_metadata(
                group=group.name,
                source_count=len(group.sources),
                sync_period=group.sync_timer.period if group.sync_timer else None,
                poll_period=group.poll_timer.period if group.poll_timer else None,
            )

            try:
                await stop_event.wait()
            finally:
                await group.close()
                await worker.drain()

    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception

    finally:
        for signal_number in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(signal_number)
        worker.shutdown()
        db_manager.dispose()

    process_logger.log_complete()
