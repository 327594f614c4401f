import asyncio
import time
from typing import Dict, Optional

import aiohttp
from google.protobuf.message import DecodeError, Message

from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.decode_worker import RealtimePayload
from transit_sync.ingestion.decoder import Decoder
from transit_sync.runtime_utils.process_logger import ProcessLogger
from transit_sync.runtime_utils.sync_exception import SourceUnavailableError
from transit_sync.sources.source_config import REALTIME, SourceConfig


async def fetch_feed_bytes(url: str, headers: Dict[str, str], context: IngestionContext) -> bytes:
    """GET one realtime document"""
    timeout = aiohttp.ClientTimeout(total=context.request_timeout)
    async with context.session.get(url, headers=headers, timeout=timeout) as response:
        if not response.ok:
            raise SourceUnavailableError(url, response.status)
        return await response.read()


async def fetch_feed(
    source: SourceConfig,
    feed_name: str,
    decoder: Decoder,
    context: IngestionContext,
) -> Optional[Message]:
    """
    fetch and decode one realtime feed of a source. failures are logged and
    reported as None so the other feeds of the source are still used.

    transport failures are retried up to context.realtime_retries times. a
    document that does not decode is not retried.
    """
    url = source.realtime_urls[feed_name]
    process_logger = ProcessLogger(
        "fetch_realtime_feed",
        source=source.source_id,
        feed_class=REALTIME,
        feed_name=feed_name,
        url=url,
    )
    process_logger.log_start()

    for attempt in range(context.realtime_retries + 1):
        try:
            document = await fetch_feed_bytes(url, dict(source.realtime_headers), context)
            break
        except (aiohttp.ClientError, asyncio.TimeoutError, SourceUnavailableError) as exception:
            process_logger.add_metadata(attempt=attempt, print_log=False)
            if attempt == context.realtime_retries:
                process_logger.log_failure(exception)
                return None
            process_logger.log_warning(exception)
            await asyncio.sleep(context.retry_interval)

    try:
        message = decoder(document)
    except DecodeError as exception:
        process_logger.log_failure(exception)
        return None

    process_logger.add_metadata(document_bytes=len(document), print_log=False)
    process_logger.log_complete()

    return message


async def poll_realtime(
    source: SourceConfig,
    decoder: Decoder,
    context: IngestionContext,
) -> asyncio.Future:
    """
    fetch every realtime feed of a source concurrently and hand the decoded
    messages to the decode worker. nothing is persisted here.

    @return asyncio.Future - the dispatched transform, awaiting it is optional
    """
    process_logger = ProcessLogger(
        "poll_realtime",
        source=source.source_id,
        feed_class=REALTIME,
        feed_count=len(source.realtime_urls),
    )
    process_logger.log_start()

    try:
        feed_names = list(source.realtime_urls.keys())
        messages = await asyncio.gather(
            *[fetch_feed(source, feed_name, decoder, context) for feed_name in feed_names]
        )

        # generated message classes don't pickle, only their bytes cross to the worker
        payload = RealtimePayload(
            source_id=source.source_id,
            fetched_at=int(time.time() * 1000),
            feeds={
                feed_name: None if message is None else message.SerializeToString()
                for feed_name, message in zip(feed_names, messages)
            },
            message_type=source.message_type,
        )

        missing_feeds = [name for name, message in payload.feeds.items() if message is None]
        process_logger.add_metadata(missing_feeds="|".join(missing_feeds), print_log=False)

        dispatched = context.worker.dispatch(payload)

        process_logger.log_complete()

        return dispatched

    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception
