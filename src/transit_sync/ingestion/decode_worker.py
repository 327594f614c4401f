import asyncio
import multiprocessing
from concurrent.futures import Executor, ProcessPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

import dataframely as dy
import polars as pl
from google.protobuf.message import Message

from transit_sync.ingestion.decoder import GTFS_RT_FEED_MESSAGE, load_message_type
from transit_sync.ingestion.gtfs_rt_frames import (
    TripUpdatesTable,
    VehiclePositionsTable,
    merge_trip_progress,
    rows_to_frame,
    trip_update_rows,
    vehicle_position_rows,
)
from transit_sync.runtime_utils.process_logger import MdValues, ProcessLogger


@dataclass(frozen=True)
class RealtimePayload:
    """
    Feed documents of one realtime poll, kept as serialized bytes of
    message_type so the payload can be sent to worker processes. A feed that
    could not be fetched or decoded is present with a None value.
    """

    source_id: str
    fetched_at: int
    feeds: Mapping[str, Optional[bytes]]
    message_type: str = GTFS_RT_FEED_MESSAGE

    def messages(self) -> Dict[str, Optional[Message]]:
        """parse every feed document back into message_type"""
        message_class = load_message_type(self.message_type)
        return {
            feed_name: None if document is None else message_class.FromString(document)
            for feed_name, document in self.feeds.items()
        }


@dataclass(frozen=True)
class RealtimeSummary:
    """result of transforming one RealtimePayload"""

    source_id: str
    fetched_at: int
    missing_feeds: Tuple[str, ...] = ()
    feed_timestamps: Dict[str, Optional[int]] = field(default_factory=dict)
    trip_update_rows: int = 0
    vehicle_position_rows: int = 0
    trip_count: int = 0

    def log_metadata(self) -> Dict[str, MdValues]:
        """flattened summary for a ProcessLogger"""
        return {
            "missing_feeds": "|".join(self.missing_feeds),
            "trip_update_rows": self.trip_update_rows,
            "vehicle_position_rows": self.vehicle_position_rows,
            "trip_count": self.trip_count,
            **{f"{name}_timestamp": timestamp for name, timestamp in self.feed_timestamps.items()},
        }


def validate_rows(rows: List[Dict[str, Any]], schema: type[dy.Schema], source_id: str) -> pl.DataFrame:
    """build a frame from flattened rows and drop rows that fail schema validation"""
    process_logger = ProcessLogger("validate_realtime_rows", source=source_id, schema=schema.__name__)
    process_logger.log_start()

    valid = process_logger.log_dataframely_filter_results(*schema.filter(rows_to_frame(rows, schema), cast=True))

    process_logger.log_complete()
    return valid


def transform_feeds(payload: RealtimePayload) -> RealtimeSummary:
    """
    flatten and validate every decoded feed of a payload, then merge trip
    updates with vehicle positions into one row per trip.

    runs inside a worker process, so it must stay a module level function.
    """
    process_logger = ProcessLogger("transform_feeds", source=payload.source_id, feed_class="realtime")
    process_logger.log_start()

    try:
        updates: List[Dict[str, Any]] = []
        positions: List[Dict[str, Any]] = []
        feed_timestamps: Dict[str, Optional[int]] = {}
        missing_feeds = []

        for feed_name, feed in payload.messages().items():
            if feed is None:
                missing_feeds.append(feed_name)
                continue
            feed_timestamps[feed_name] = feed.header.timestamp if feed.header.HasField("timestamp") else None
            updates.extend(trip_update_rows(feed))
            positions.extend(vehicle_position_rows(feed))

        trip_updates = validate_rows(updates, TripUpdatesTable, payload.source_id)
        vehicle_positions = validate_rows(positions, VehiclePositionsTable, payload.source_id)
        trip_progress = merge_trip_progress(trip_updates, vehicle_positions)

        summary = RealtimeSummary(
            source_id=payload.source_id,
            fetched_at=payload.fetched_at,
            missing_feeds=tuple(missing_feeds),
            feed_timestamps=feed_timestamps,
            trip_update_rows=trip_updates.height,
            vehicle_position_rows=vehicle_positions.height,
            trip_count=trip_progress.height,
        )

        process_logger.add_metadata(**summary.log_metadata(), print_log=False)
        process_logger.log_complete()

        return summary

    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception


class DecodeWorker:
    """
    Hands realtime payloads to an isolated executor. Results and failures are
    only logged; nothing raised by a transform reaches the poll that
    dispatched it.
    """

    def __init__(
        self,
        executor: Optional[Executor] = None,
        transform: Callable[[RealtimePayload], RealtimeSummary] = transform_feeds,
        max_workers: Optional[int] = None,
    ) -> None:
        if executor is None:
            executor = ProcessPoolExecutor(
                max_workers=max_workers,
                mp_context=multiprocessing.get_context("spawn"),
            )
        self.executor = executor
        self.transform = transform
        self._pending: Set[asyncio.Future] = set()

    @property
    def pending_count(self) -> int:
        """number of dispatched payloads that have not finished"""
        return len(self._pending)

    def dispatch(self, payload: RealtimePayload) -> asyncio.Future:
        """
        submit a payload to the executor without waiting on it. the returned
        future may be awaited, but never needs to be.
        """
        process_logger = ProcessLogger(
            "decode_worker",
            source=payload.source_id,
            feed_class="realtime",
            feeds="|".join(payload.feeds.keys()),
        )
        process_logger.log_start()

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, self.transform, payload)
        self._pending.add(future)
        future.add_done_callback(partial(self._on_done, process_logger))

        return future

    def _on_done(self, process_logger: ProcessLogger, future: asyncio.Future) -> None:
        self._pending.discard(future)

        if future.cancelled():
            process_logger.log_warning(asyncio.CancelledError("realtime transform cancelled"))
            return

        exception = future.exception()
        if exception is not None:
            process_logger.log_failure(exception)
            return

        summary = future.result()
        if isinstance(summary, RealtimeSummary):
            process_logger.add_metadata(**summary.log_metadata(), print_log=False)
        process_logger.log_complete()

    async def drain(self) -> None:
        """wait for every dispatched payload to finish"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def shutdown(self, wait: bool = True) -> None:
        """stop the executor, dropping payloads that have not started"""
        self.executor.shutdown(wait=wait, cancel_futures=True)
