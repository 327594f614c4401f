from dataclasses import dataclass

import aiohttp

from transit_sync.database.database_utils import DatabaseManager
from transit_sync.ingestion.decode_worker import DecodeWorker
from transit_sync.ingestion.freshness import FreshnessStore
from transit_sync.runtime_utils.local_files import (
    REALTIME_RETRIES,
    REQUEST_TIMEOUT_SECONDS,
    RETRY_INTERVAL_SECONDS,
    WORK_DIR,
)


@dataclass
class IngestionContext:
    """
    Collaborators shared by every source of a process. Sources hold a
    reference, so one session, one database and one freshness store serve
    all of them.
    """

    session: aiohttp.ClientSession
    db_manager: DatabaseManager
    freshness: FreshnessStore
    worker: DecodeWorker
    work_dir: str = WORK_DIR
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    realtime_retries: int = REALTIME_RETRIES
    retry_interval: float = RETRY_INTERVAL_SECONDS
