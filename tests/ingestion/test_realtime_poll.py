import asyncio
import dataclasses
from typing import List

import aiohttp
import pytest

from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.decode_worker import RealtimePayload, RealtimeSummary
from transit_sync.ingestion.decoder import load_decoder
from transit_sync.ingestion.realtime_poll import fetch_feed, poll_realtime
from transit_sync.sources.source_config import TRIP_UPDATES, VEHICLE_POSITIONS, SourceConfig
from tests.test_resources import FakeResponse, FakeSession, trip_updates_feed, vehicle_positions_feed


class RecordingWorker:
    """decode worker that keeps payloads instead of transforming them"""

    def __init__(self) -> None:
        self.payloads: List[RealtimePayload] = []

    def dispatch(self, payload: RealtimePayload) -> asyncio.Future:
        self.payloads.append(payload)
        future = asyncio.get_running_loop().create_future()
        future.set_result(None)
        return future


@pytest.fixture(name="recording_worker")
def fixture_recording_worker() -> RecordingWorker:
    """worker that records dispatched payloads"""
    return RecordingWorker()


@pytest.fixture(name="recording_context")
def fixture_recording_context(context: IngestionContext, recording_worker: RecordingWorker) -> IngestionContext:
    """ingestion context that dispatches to the recording worker"""
    return dataclasses.replace(context, worker=recording_worker)  # type: ignore[arg-type]


def trip_updates_url(source_config: SourceConfig) -> str:
    return source_config.realtime_urls[TRIP_UPDATES]


def vehicle_positions_url(source_config: SourceConfig) -> str:
    return source_config.realtime_urls[VEHICLE_POSITIONS]


@pytest.mark.asyncio
async def test_both_feeds(
    recording_context: IngestionContext,
    recording_worker: RecordingWorker,
    fake_session: FakeSession,
    source_config: SourceConfig,
) -> None:
    "It dispatches one payload with every decoded feed."
    fake_session.add("GET", trip_updates_url(source_config), FakeResponse(body=trip_updates_feed().SerializeToString()))
    fake_session.add(
        "GET", vehicle_positions_url(source_config), FakeResponse(body=vehicle_positions_feed().SerializeToString())
    )

    await poll_realtime(source_config, load_decoder(), recording_context)

    assert len(recording_worker.payloads) == 1
    payload = recording_worker.payloads[0]
    assert payload.source_id == "TEST_metro"
    assert payload.message_type == source_config.message_type
    assert payload.messages()[TRIP_UPDATES] == trip_updates_feed()
    assert payload.messages()[VEHICLE_POSITIONS] == vehicle_positions_feed()

    for _, _, kwargs in fake_session.calls:
        assert kwargs["headers"] == dict(source_config.realtime_headers)


@pytest.mark.asyncio
async def test_partial_feed_failure(
    recording_context: IngestionContext,
    recording_worker: RecordingWorker,
    fake_session: FakeSession,
    source_config: SourceConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    "It keeps the feeds that worked when another feed of the source fails."
    fake_session.add("GET", trip_updates_url(source_config), FakeResponse(status=500))
    fake_session.add(
        "GET", vehicle_positions_url(source_config), FakeResponse(body=vehicle_positions_feed().SerializeToString())
    )

    await poll_realtime(source_config, load_decoder(), recording_context)

    payload = recording_worker.payloads[0]
    assert payload.feeds[TRIP_UPDATES] is None
    assert payload.messages()[VEHICLE_POSITIONS] == vehicle_positions_feed()
    assert "missing_feeds=trip_updates" in caplog.text


@pytest.mark.parametrize(
    "failure",
    [aiohttp.ClientConnectionError("connection reset"), asyncio.TimeoutError()],
    ids=["transport-error", "timeout"],
)
@pytest.mark.asyncio
async def test_transport_failure(
    recording_context: IngestionContext,
    recording_worker: RecordingWorker,
    fake_session: FakeSession,
    source_config: SourceConfig,
    failure: BaseException,
) -> None:
    "It reports unreachable feeds as missing instead of raising."
    fake_session.add("GET", trip_updates_url(source_config), failure)
    fake_session.add("GET", vehicle_positions_url(source_config), failure)

    await poll_realtime(source_config, load_decoder(), recording_context)

    assert recording_worker.payloads[0].feeds == {TRIP_UPDATES: None, VEHICLE_POSITIONS: None}


@pytest.mark.asyncio
async def test_retry(
    recording_context: IngestionContext,
    fake_session: FakeSession,
    source_config: SourceConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    "It retries failed requests up to the configured limit."
    url = vehicle_positions_url(source_config)
    fake_session.add("GET", url, FakeResponse(status=503), FakeResponse(body=vehicle_positions_feed().SerializeToString()))
    retrying_context = dataclasses.replace(recording_context, realtime_retries=2, retry_interval=0)

    message = await fetch_feed(source_config, VEHICLE_POSITIONS, load_decoder(), retrying_context)

    assert message == vehicle_positions_feed()
    assert fake_session.call_count("GET", url) == 2
    assert "status=warning" in caplog.text


@pytest.mark.asyncio
async def test_retry_exhausted(
    recording_context: IngestionContext,
    fake_session: FakeSession,
    source_config: SourceConfig,
) -> None:
    "It gives up after the configured number of retries."
    url = vehicle_positions_url(source_config)
    fake_session.add("GET", url, FakeResponse(status=503))
    retrying_context = dataclasses.replace(recording_context, realtime_retries=2, retry_interval=0)

    assert await fetch_feed(source_config, VEHICLE_POSITIONS, load_decoder(), retrying_context) is None
    assert fake_session.call_count("GET", url) == 3


@pytest.mark.asyncio
async def test_decode_error_not_retried(
    recording_context: IngestionContext,
    fake_session: FakeSession,
    source_config: SourceConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    "It treats an undecodable document as a missing feed without retrying."
    url = trip_updates_url(source_config)
    # length delimited header that claims more bytes than the document has
    fake_session.add("GET", url, FakeResponse(body=b"\x0a\xff"))
    retrying_context = dataclasses.replace(recording_context, realtime_retries=2, retry_interval=0)

    assert await fetch_feed(source_config, TRIP_UPDATES, load_decoder(), retrying_context) is None
    assert fake_session.call_count("GET", url) == 1
    assert "error_type=DecodeError" in caplog.text


@pytest.mark.asyncio
async def test_poll_to_summary(
    context: IngestionContext,
    fake_session: FakeSession,
    source_config: SourceConfig,
) -> None:
    "It hands decoded feeds to the decode worker and never waits on the result."
    fake_session.add("GET", trip_updates_url(source_config), FakeResponse(body=trip_updates_feed().SerializeToString()))
    fake_session.add(
        "GET", vehicle_positions_url(source_config), FakeResponse(body=vehicle_positions_feed().SerializeToString())
    )

    dispatched = await poll_realtime(source_config, load_decoder(), context)
    summary = await dispatched

    assert isinstance(summary, RealtimeSummary)
    assert summary.source_id == "TEST_metro"
    assert summary.missing_feeds == ()
    assert summary.trip_update_rows == 3
    assert summary.vehicle_position_rows == 2
    assert summary.trip_count == 2
