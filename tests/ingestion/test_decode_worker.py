import dataclasses
import logging
import pickle
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

import pytest

from transit_sync.ingestion.decode_worker import DecodeWorker, RealtimePayload, RealtimeSummary, transform_feeds
from transit_sync.ingestion.gtfs_rt_frames import (
    TripUpdatesTable,
    VehiclePositionsTable,
    merge_trip_progress,
    rows_to_frame,
    trip_update_rows,
    vehicle_position_rows,
)
from transit_sync.runtime_utils.sync_exception import MessageTypeNotFoundError
from transit_sync.sources.source_config import TRIP_UPDATES, VEHICLE_POSITIONS
from tests.test_resources import trip_updates_feed, vehicle_positions_feed


def full_payload() -> RealtimePayload:
    return RealtimePayload(
        source_id="TEST_metro",
        fetched_at=1718154215000,
        feeds={
            TRIP_UPDATES: trip_updates_feed().SerializeToString(),
            VEHICLE_POSITIONS: vehicle_positions_feed().SerializeToString(),
        },
    )


def test_trip_update_rows() -> None:
    "It explodes trip updates to one row per stop time update."
    rows = trip_update_rows(trip_updates_feed())

    assert [(row["trip_id"], row["stop_sequence"]) for row in rows] == [("trip_1", 1), ("trip_1", 2), ("trip_2", None)]
    assert rows[0]["arrival_delay"] == 60
    assert rows[0]["departure_delay"] is None
    assert rows[1]["departure_delay"] == 120
    assert rows[2]["route_id"] is None


def test_vehicle_position_rows() -> None:
    "It flattens one row per vehicle, leaving unset fields empty."
    rows = vehicle_position_rows(vehicle_positions_feed())

    assert [row["vehicle_id"] for row in rows] == ["car_1", "car_2"]
    assert rows[0]["current_status"] == "STOPPED_AT"
    assert rows[0]["trip_id"] == "trip_1"
    assert rows[1]["trip_id"] is None
    assert rows[1]["current_status"] is None
    assert rows[1]["bearing"] is None


def test_merge_trip_progress() -> None:
    "It joins trip updates and vehicle positions into one row per trip."
    trip_updates = rows_to_frame(trip_update_rows(trip_updates_feed()), TripUpdatesTable)
    vehicle_positions = rows_to_frame(vehicle_position_rows(vehicle_positions_feed()), VehiclePositionsTable)

    progress = merge_trip_progress(trip_updates, vehicle_positions).sort("trip_id")

    assert progress["trip_id"].to_list() == ["trip_1", "trip_2"]
    assert progress["max_delay"].to_list() == [120, None]
    assert progress["stop_time_updates"].to_list() == [2, 0]
    assert progress["vehicle_id"].to_list() == ["car_1", None]


def test_transform_feeds() -> None:
    "It summarizes every feed of a payload."
    summary = transform_feeds(full_payload())

    assert summary == RealtimeSummary(
        source_id="TEST_metro",
        fetched_at=1718154215000,
        missing_feeds=(),
        feed_timestamps={TRIP_UPDATES: 1718154200, VEHICLE_POSITIONS: 1718154210},
        trip_update_rows=3,
        vehicle_position_rows=2,
        trip_count=2,
    )


def test_transform_missing_feeds() -> None:
    "It summarizes a payload where every feed failed."
    summary = transform_feeds(RealtimePayload("TEST_metro", 0, {TRIP_UPDATES: None, VEHICLE_POSITIONS: None}))

    assert summary.missing_feeds == (TRIP_UPDATES, VEHICLE_POSITIONS)
    assert summary.trip_update_rows == 0
    assert summary.vehicle_position_rows == 0
    assert summary.trip_count == 0


def test_transform_drops_invalid_rows(caplog: pytest.LogCaptureFixture) -> None:
    "It drops rows that fail validation and warns about them."
    feed = vehicle_positions_feed()
    feed.entity[1].vehicle.position.latitude = 123.0

    summary = transform_feeds(RealtimePayload("TEST_metro", 0, {VEHICLE_POSITIONS: feed.SerializeToString()}))

    assert summary.vehicle_position_rows == 1
    assert "latitude|max" in caplog.text
    assert logging.WARNING in [r[1] for r in caplog.record_tuples]


def test_payload_crosses_process_boundary() -> None:
    "It can send payloads to worker processes."
    payload = full_payload()

    assert pickle.loads(pickle.dumps(payload)) == payload


@pytest.mark.asyncio
async def test_dispatch_to_worker_process(caplog: pytest.LogCaptureFixture) -> None:
    "It transforms payloads in a spawned worker process and logs the summary."
    worker = DecodeWorker(max_workers=1)
    try:
        summary = await worker.dispatch(full_payload())

        assert isinstance(summary, RealtimeSummary)
        assert summary.source_id == "TEST_metro"
        assert summary.trip_update_rows == 3
        assert summary.vehicle_position_rows == 2
        assert summary.trip_count == 2
        assert worker.pending_count == 0
        assert "trip_count=2" in caplog.text
        assert "status=failed" not in caplog.text
    finally:
        worker.shutdown()


def test_unknown_payload_message_type() -> None:
    "It refuses to parse feed documents of an unknown message type."
    payload = dataclasses.replace(full_payload(), message_type="no_such_module_pb2.FeedMessage")

    with pytest.raises(MessageTypeNotFoundError):
        transform_feeds(payload)


def test_default_executor() -> None:
    "It isolates transforms in a process pool by default."
    worker = DecodeWorker(max_workers=1)
    try:
        assert isinstance(worker.executor, ProcessPoolExecutor)
    finally:
        worker.shutdown()


@pytest.mark.asyncio
async def test_dispatch_logs_completion(caplog: pytest.LogCaptureFixture) -> None:
    "It logs the summary of every finished transform."
    worker = DecodeWorker(executor=ThreadPoolExecutor(max_workers=1))
    try:
        worker.dispatch(full_payload())
        assert worker.pending_count == 1

        await worker.drain()

        assert worker.pending_count == 0
        assert "process_name=decode_worker" in caplog.text
        assert "trip_count=2" in caplog.text
    finally:
        worker.shutdown()


@pytest.mark.asyncio
async def test_dispatch_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    "It logs transform failures without raising them to the caller."

    def failing_transform(payload: RealtimePayload) -> RealtimeSummary:
        raise ValueError(f"can't transform {payload.source_id}")

    worker = DecodeWorker(executor=ThreadPoolExecutor(max_workers=1), transform=failing_transform)
    try:
        worker.dispatch(full_payload())
        await worker.drain()

        assert worker.pending_count == 0
        assert "status=failed" in caplog.text
        assert "can't transform TEST_metro" in caplog.text
    finally:
        worker.shutdown()


def test_summary_log_metadata() -> None:
    "It flattens feed timestamps for logging."
    summary = RealtimeSummary("TEST_metro", 0, missing_feeds=(TRIP_UPDATES,), feed_timestamps={VEHICLE_POSITIONS: 5})

    assert summary.log_metadata() == {
        "missing_feeds": TRIP_UPDATES,
        "trip_update_rows": 0,
        "vehicle_position_rows": 0,
        "trip_count": 0,
        "vehicle_positions_timestamp": 5,
    }


def test_rows_to_frame_empty() -> None:
    "It builds an empty frame with the full column layout."
    frame = rows_to_frame([], TripUpdatesTable)

    assert frame.height == 0
    assert frame.columns == TripUpdatesTable.column_names()
