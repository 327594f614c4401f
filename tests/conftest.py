"""
this file contains fixtures that are intended to be used across multiple test
files
"""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterator

import pytest

from transit_sync.database.database_utils import DatabaseManager
from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.decode_worker import DecodeWorker
from transit_sync.ingestion.freshness import FreshnessStore
from transit_sync.sources.source_config import TRIP_UPDATES, VEHICLE_POSITIONS, SourceConfig
from tests.test_resources import FakeSession, MemoryBackend


@pytest.fixture(name="db_manager")
def fixture_db_manager(tmp_path: Path) -> Iterator[DatabaseManager]:
    """sqlite database in a temporary folder"""
    db_manager = DatabaseManager(tmp_path.joinpath("gtfs.db").as_posix())
    yield db_manager
    db_manager.dispose()


@pytest.fixture(name="freshness_backend")
def fixture_freshness_backend() -> MemoryBackend:
    """in memory freshness backend, starting with no records"""
    return MemoryBackend()


@pytest.fixture(name="freshness")
def fixture_freshness(freshness_backend: MemoryBackend) -> FreshnessStore:
    """freshness store over the in memory backend"""
    return FreshnessStore(freshness_backend)


@pytest.fixture(name="fake_session")
def fixture_fake_session() -> FakeSession:
    """scripted http session"""
    return FakeSession()


@pytest.fixture(name="decode_worker")
def fixture_decode_worker() -> Iterator[DecodeWorker]:
    """decode worker over threads, so tests don't spawn processes"""
    worker = DecodeWorker(executor=ThreadPoolExecutor(max_workers=2))
    yield worker
    worker.shutdown()


@pytest.fixture(name="context")
def fixture_context(
    tmp_path: Path,
    fake_session: FakeSession,
    db_manager: DatabaseManager,
    freshness: FreshnessStore,
    decode_worker: DecodeWorker,
) -> IngestionContext:
    """ingestion collaborators wired to the test doubles"""
    return IngestionContext(
        session=fake_session,  # type: ignore[arg-type]
        db_manager=db_manager,
        freshness=freshness,
        worker=decode_worker,
        work_dir=tmp_path.joinpath("work").as_posix(),
        request_timeout=5,
        realtime_retries=0,
        retry_interval=0,
    )


@pytest.fixture(name="source_config")
def fixture_source_config() -> SourceConfig:
    """a single source with one schedule archive and two realtime feeds"""
    return SourceConfig(
        group_name="TEST",
        name="metro",
        schedule_url="https://example.test/v2/gtfs/schedule/metro",
        realtime_urls={
            TRIP_UPDATES: "https://example.test/v2/gtfs/realtime/metro",
            VEHICLE_POSITIONS: "https://example.test/v2/gtfs/vehiclepos/metro",
        },
        schedule_headers={"accept": "application/octet-stream", "authorization": "apikey test"},
        realtime_headers={"accept": "application/x-google-protobuf", "authorization": "apikey test"},
    )
