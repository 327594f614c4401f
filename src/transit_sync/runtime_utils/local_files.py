import os

# directory constants
GTFS_DATA_DIR: str = os.environ.get("GTFS_DATA_DIR", "gtfs")
WORK_DIR: str = os.environ.get("WORK_DIR", GTFS_DATA_DIR)

# file constants
GTFS_DB_PATH: str = os.environ.get("GTFS_DB_PATH", os.path.join(GTFS_DATA_DIR, "gtfs.db"))
FRESHNESS_FILE: str = os.environ.get("FRESHNESS_FILE", os.path.join(GTFS_DATA_DIR, "gtfs.json"))

# network constants
REQUEST_TIMEOUT_SECONDS: float = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", 60))
REALTIME_RETRIES: int = int(os.environ.get("REALTIME_RETRIES", 0))
RETRY_INTERVAL_SECONDS: float = float(os.environ.get("RETRY_INTERVAL_SECONDS", 2))

# scheduling constants, unset values fall back to the defaults of each group
SCHEDULE_SYNC_PERIOD: str = os.environ.get("SCHEDULE_SYNC_PERIOD_SECONDS", "")
REALTIME_POLL_PERIOD: str = os.environ.get("REALTIME_POLL_PERIOD_SECONDS", "")

# decode worker processes, empty lets the executor pick from the cpu count
DECODE_WORKERS: str = os.environ.get("DECODE_WORKERS", "")
