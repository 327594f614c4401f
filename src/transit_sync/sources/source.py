import asyncio
from typing import Optional

from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.decoder import Decoder, load_decoder
from transit_sync.ingestion.realtime_poll import poll_realtime
from transit_sync.ingestion.schedule_sync import sync_schedule
from transit_sync.runtime_utils.process_logger import ProcessLogger
from transit_sync.runtime_utils.sync_exception import SyncInProgressError
from transit_sync.sources.source_config import SourceConfig


class Source:
    """
    One upstream publisher bound to the shared ingestion collaborators
    """

    def __init__(self, config: SourceConfig, context: IngestionContext) -> None:
        self.config = config
        self.context = context
        self._decoder: Optional[Decoder] = None
        self._sync_lock = asyncio.Lock()

    @property
    def source_id(self) -> str:
        """unique identity of the source"""
        return self.config.source_id

    @property
    def decoder(self) -> Decoder:
        """realtime decoder, resolved on first use"""
        if self._decoder is None:
            self._decoder = load_decoder(self.config.message_type)
        return self._decoder

    async def initialize(self) -> None:
        """
        resolve the realtime decoder, then run one schedule sync followed by
        one realtime poll. the poll runs even when the sync fails, after which
        the sync error is raised.
        """
        process_logger = ProcessLogger("initialize_source", source=self.source_id)
        process_logger.log_start()

        try:
            _ = self.decoder
            try:
                await self.sync_schedule()
            finally:
                await self.poll_realtime()

            process_logger.log_complete()

        except Exception as exception:
            process_logger.log_failure(exception)
            raise exception

    async def sync_schedule(self) -> bool:
        """
        bring loaded schedule tables up to date. a sync requested while one is
        already running for this source is skipped and logged, so two loads
        never replace the same tables at once.

        @return bool - True if tables were reloaded
        """
        if self._sync_lock.locked():
            process_logger = ProcessLogger("sync_schedule", source=self.source_id)
            process_logger.add_metadata(skipped=True, print_log=False)
            process_logger.log_warning(SyncInProgressError(self.source_id))
            return False

        async with self._sync_lock:
            return await sync_schedule(self.config, self.context)

    async def poll_realtime(self) -> asyncio.Future:
        """fetch the realtime feeds and dispatch them for decoding"""
        return await poll_realtime(self.config, self.decoder, self.context)
