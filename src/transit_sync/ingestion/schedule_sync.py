import asyncio
import os
import shutil
import time
import zipfile
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, Sequence

import aiohttp

from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.gtfs_schema_map import gtfs_index, gtfs_schema, gtfs_schema_list
from transit_sync.ingestion.table_loader import load_table
from transit_sync.runtime_utils.process_logger import ProcessLogger
from transit_sync.runtime_utils.sync_exception import ScheduleLoadError, SourceUnavailableError
from transit_sync.sources.source_config import SCHEDULE, SourceConfig

DOWNLOAD_CHUNK_BYTES = 1 << 16


def parse_last_modified(header_value: Optional[str]) -> Optional[int]:
    """
    convert an http date (ie. Wed, 12 Jun 2024 01:02:03 GMT) to epoch
    milliseconds. returns None when the value is missing or unparseable.
    """
    if not header_value:
        return None

    try:
        parsed = parsedate_to_datetime(header_value)
    except (TypeError, ValueError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return int(parsed.timestamp() * 1000)


async def fetch_last_modified(source: SourceConfig, context: IngestionContext) -> int:
    """
    HEAD the schedule archive and return its publication time
    """
    timeout = aiohttp.ClientTimeout(total=context.request_timeout)
    async with context.session.head(
        source.schedule_url,
        headers=dict(source.schedule_headers),
        allow_redirects=True,
        timeout=timeout,
    ) as response:
        if not response.ok:
            raise SourceUnavailableError(source.schedule_url, response.status)
        status = response.status
        last_modified = parse_last_modified(response.headers.get("Last-Modified"))

    if last_modified is None:
        raise SourceUnavailableError(source.schedule_url, status, "missing Last-Modified header")

    return last_modified


async def download_archive(source: SourceConfig, context: IngestionContext, archive_path: str) -> int:
    """
    stream the schedule archive to archive_path and return its size in bytes.
    archives can be large, so only connect and read stalls time out.
    """
    timeout = aiohttp.ClientTimeout(
        total=None,
        sock_connect=context.request_timeout,
        sock_read=context.request_timeout,
    )
    archive_bytes = 0
    async with context.session.request(
        source.method,
        source.schedule_url,
        headers=dict(source.schedule_headers),
        timeout=timeout,
    ) as response:
        if not response.ok:
            raise SourceUnavailableError(source.schedule_url, response.status, "download failed")

        with open(archive_path, "wb") as writer:
            async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_BYTES):
                writer.write(chunk)
                archive_bytes += len(chunk)

    return archive_bytes


def extract_archive(archive_path: str, extract_dir: str) -> List[str]:
    """unpack a zip archive and return the names of its members"""
    with zipfile.ZipFile(archive_path) as archive:
        archive.extractall(extract_dir)
        return archive.namelist()


async def load_tables(source: SourceConfig, context: IngestionContext, extract_dir: str) -> int:
    """
    load every catalog table found in extract_dir, one thread per table.
    all loads are allowed to finish before the first failure is raised.

    @return int - total rows loaded
    """
    table_names = gtfs_schema_list()
    results = await asyncio.gather(
        *[
            asyncio.to_thread(
                load_table,
                context.db_manager,
                f"{source.source_id}_{table}",
                gtfs_schema(table),
                gtfs_index(table),
                os.path.join(extract_dir, f"{table}.txt"),
            )
            for table in table_names
        ],
        return_exceptions=True,
    )

    row_count = 0
    for table, result in zip(table_names, results):
        if isinstance(result, BaseException):
            raise ScheduleLoadError(f"{source.source_id}_{table}") from result
        row_count += result

    return row_count


def remove_artifacts(source_id: str, paths: Sequence[str], reason: str) -> None:
    """
    delete downloaded archives and extracted folders. problems are logged and
    never raised.
    """
    process_logger = ProcessLogger("remove_sync_artifacts", source=source_id, feed_class=SCHEDULE, reason=reason)
    process_logger.log_start()

    removed = 0
    for path in paths:
        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
            elif os.path.exists(path):
                os.remove(path)
            else:
                continue
            removed += 1
        except OSError as exception:
            process_logger.log_warning(exception)

    process_logger.add_metadata(removed=removed, print_log=False)
    process_logger.log_complete()


async def sync_schedule(source: SourceConfig, context: IngestionContext) -> bool:
    """
    bring the loaded schedule tables of a source up to date with its upstream
    archive.

    the freshness record of the source is only advanced once every table has
    been reloaded, so a failed sync is retried from scratch next time.

    @return bool - True if tables were reloaded, False if already current
    """
    process_logger = ProcessLogger(
        "sync_schedule",
        source=source.source_id,
        feed_class=SCHEDULE,
        url=source.schedule_url,
    )
    process_logger.log_start()

    try:
        last_modified = await fetch_last_modified(source, context)
        process_logger.add_metadata(last_modified=last_modified, print_log=False)

        if context.freshness.get(source.source_id) == last_modified:
            process_logger.add_metadata(up_to_date=True, print_log=False)
            process_logger.log_complete()
            return False

        os.makedirs(context.work_dir, exist_ok=True)
        extract_dir = os.path.join(context.work_dir, f"{source.source_id}_{time.time_ns()}")
        archive_path = f"{extract_dir}.zip"
        artifacts = [archive_path, extract_dir]

        try:
            archive_bytes = await download_archive(source, context, archive_path)
            await asyncio.to_thread(extract_archive, archive_path, extract_dir)
            row_count = await load_tables(source, context, extract_dir)
        except Exception:
            await asyncio.to_thread(remove_artifacts, source.source_id, artifacts, "sync_failed")
            raise

        await asyncio.to_thread(remove_artifacts, source.source_id, artifacts, "sync_complete")
        await context.freshness.record(source.source_id, last_modified)

        process_logger.add_metadata(
            up_to_date=False,
            archive_bytes=archive_bytes,
            row_count=row_count,
            print_log=False,
        )
        process_logger.log_complete()

        return True

    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception
