import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

from transit_sync.runtime_utils.process_logger import ProcessLogger

LAST_UPDATED_KEY = "lastUpdated"


class FreshnessBackend(ABC):
    """
    Abstract Base Class for the durable storage behind a FreshnessStore
    """

    @abstractmethod
    def read(self) -> Dict[str, int]:
        """
        return the persisted source_id -> timestamp mapping. an unreadable
        store is treated as "never synced" and returns an empty mapping.
        """

    @abstractmethod
    def write(self, last_updated: Dict[str, int]) -> None:
        """durably replace the persisted mapping"""


class JsonFileBackend(FreshnessBackend):
    """
    Keep freshness in a single json document

    {
        "lastUpdated": {
            "NSW_sydneytrains": 1718000000000,
            ...
        }
    }
    """

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path

    def read(self) -> Dict[str, int]:
        process_logger = ProcessLogger("read_freshness_file", file_path=self.file_path)
        process_logger.log_start()
        try:
            with open(self.file_path, "r", encoding="utf8") as reader:
                document = json.load(reader)

            last_updated = document.get(LAST_UPDATED_KEY, {})
            if not isinstance(last_updated, dict):
                raise ValueError(f"{LAST_UPDATED_KEY} is not a mapping")

        except (OSError, ValueError, AttributeError) as exception:
            # json.JSONDecodeError is a ValueError
            process_logger.log_warning(exception)
            return {}

        process_logger.add_metadata(source_count=len(last_updated), print_log=False)
        process_logger.log_complete()

        return {str(key): value for key, value in last_updated.items()}

    def write(self, last_updated: Dict[str, int]) -> None:
        folder = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(folder, exist_ok=True)

        # write next to the target and swap it in, so a crash mid-write never
        # leaves a truncated document behind
        with tempfile.NamedTemporaryFile("w", encoding="utf8", dir=folder, suffix=".tmp", delete=False) as writer:
            json.dump({LAST_UPDATED_KEY: last_updated}, writer, indent=2)
            tmp_path = writer.name

        os.replace(tmp_path, self.file_path)


class FreshnessStore:
    """
    Process wide record of the last publication timestamp loaded for each
    source.

    The mapping is read from the backend once, at construction. Concurrent
    sync pipelines may call set() freely; persist() serializes writers so a
    slower write can never replace the mapping with an older snapshot.
    """

    def __init__(self, backend: FreshnessBackend) -> None:
        self.backend = backend
        self._last_updated: Dict[str, int] = backend.read()
        self._write_lock = asyncio.Lock()

    def get(self, source_id: str) -> Optional[int]:
        """last recorded publication timestamp for source_id"""
        return self._last_updated.get(source_id)

    def set(self, source_id: str, timestamp: int) -> None:
        """update the in memory timestamp for source_id"""
        self._last_updated[source_id] = timestamp

    async def persist(self) -> None:
        """durably write the full mapping"""
        async with self._write_lock:
            snapshot = dict(self._last_updated)
            await asyncio.to_thread(self.backend.write, snapshot)

    async def record(self, source_id: str, timestamp: int) -> None:
        """set a new timestamp for source_id and persist it"""
        process_logger = ProcessLogger("record_freshness", source=source_id, last_modified=timestamp)
        process_logger.log_start()
        self.set(source_id, timestamp)
        await self.persist()
        process_logger.log_complete()

    def snapshot(self) -> Dict[str, int]:
        """copy of the current in memory mapping"""
        return dict(self._last_updated)
