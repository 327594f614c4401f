#!/usr/bin/env python

import asyncio
import logging
import os

from transit_sync.runtime_utils.env_validation import validate_environment
from transit_sync.runtime_utils.import_env import load_environment

logging.getLogger().setLevel("INFO")
DESCRIPTION = """Entry Point For GTFS Schedule Sync And Realtime Polling"""


def start() -> None:
    """configure and start the transit sync service"""
    load_environment()

    # configure the environment
    os.environ["SERVICE_NAME"] = "transit_sync"

    validate_environment(
        required_variables=["NSW_APIKEY"],
        private_variables=["NSW_APIKEY"],
        optional_variables=[
            "GTFS_DATA_DIR",
            "GTFS_DB_PATH",
            "FRESHNESS_FILE",
            "WORK_DIR",
            "REQUEST_TIMEOUT_SECONDS",
            "REALTIME_RETRIES",
            "RETRY_INTERVAL_SECONDS",
            "SCHEDULE_SYNC_PERIOD_SECONDS",
            "REALTIME_POLL_PERIOD_SECONDS",
            "DECODE_WORKERS",
        ],
    )

    # path and tuning constants are read when the service module is imported,
    # so it is only imported once the .env file has been applied
    from transit_sync.service import main  # pylint: disable=import-outside-toplevel

    asyncio.run(main())


if __name__ == "__main__":
    start()
