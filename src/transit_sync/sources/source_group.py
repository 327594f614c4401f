import asyncio
from functools import partial
from typing import Any, Callable, Coroutine, List, Optional, Sequence, Set

from transit_sync.ingestion.context import IngestionContext
from transit_sync.runtime_utils.process_logger import ProcessLogger
from transit_sync.sources.source import Source
from transit_sync.sources.source_config import SourceDefaults, SourceOverride, build_source_configs

DEFAULT_SYNC_PERIOD_SECONDS = 8 * 60 * 60
DEFAULT_POLL_PERIOD_SECONDS = 60


class RecurringTimer:
    """
    Call action every period seconds until stopped. The first call happens
    one period after start. Actions are expected to return quickly, so the
    next tick is never delayed by the work an action starts.
    """

    def __init__(self, name: str, period: float, action: Callable[[], Any]) -> None:
        if period <= 0:
            raise ValueError(f"timer {name} needs a positive period, got {period}")
        self.name = name
        self.period = period
        self.action = action
        self.task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        """True while the timer is ticking"""
        return self.task is not None and not self.task.done()

    def start(self) -> None:
        """begin ticking, no-op if already running"""
        if self.running:
            return
        self.task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def stop(self) -> None:
        """stop ticking. work already started by an action keeps running."""
        if self.task is not None:
            self.task.cancel()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            try:
                self.action()
            except Exception as exception:
                process_logger = ProcessLogger("recurring_timer", timer=self.name, period=self.period)
                process_logger.log_failure(exception)


class SourceGroup:
    """
    A set of sources that share defaults and run on the same schedule. Group
    operations start one task per source and return without waiting, so a
    slow or failing source never holds up the others.
    """

    def __init__(self, name: str, sources: Sequence[Source]) -> None:
        self.name = name
        self.sources = list(sources)
        self.sync_timer: Optional[RecurringTimer] = None
        self.poll_timer: Optional[RecurringTimer] = None
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        name: str,
        defaults: SourceDefaults,
        overrides: Sequence[SourceOverride],
        context: IngestionContext,
    ) -> "SourceGroup":
        """build a group and its sources from group defaults and per source values"""
        configs = build_source_configs(name, defaults, overrides)
        return cls(name, [Source(config, context) for config in configs])

    @property
    def in_flight(self) -> int:
        """number of pipeline tasks that have not finished"""
        return len(self._tasks)

    def _spawn(self, source: Source, operation: str, coroutine: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coroutine, name=f"{operation}:{source.source_id}")
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_task_done, source.source_id, operation))
        return task

    def _on_task_done(self, source_id: str, operation: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        exception = task.exception()
        if exception is not None:
            process_logger = ProcessLogger(
                "source_group_task",
                group=self.name,
                source=source_id,
                operation=operation,
            )
            process_logger.log_failure(exception)

    def start(self) -> List[asyncio.Task]:
        """initialize every source: one schedule sync, then one realtime poll"""
        process_logger = ProcessLogger("start_source_group", group=self.name, source_count=len(self.sources))
        process_logger.log_start()
        tasks = [self._spawn(source, "initialize", source.initialize()) for source in self.sources]
        process_logger.log_complete()
        return tasks

    def sync_all(self) -> List[asyncio.Task]:
        """start a schedule sync for every source"""
        return [self._spawn(source, "sync_schedule", source.sync_schedule()) for source in self.sources]

    def poll_all(self) -> List[asyncio.Task]:
        """start a realtime poll for every source"""
        return [self._spawn(source, "poll_realtime", source.poll_realtime()) for source in self.sources]

    def start_auto_sync(self, period: float = DEFAULT_SYNC_PERIOD_SECONDS) -> None:
        """sync every source every period seconds, replacing any running schedule"""
        self.stop_auto_sync()
        self.sync_timer = RecurringTimer(f"{self.name}_auto_sync", period, self.sync_all)
        self.sync_timer.start()

    def stop_auto_sync(self) -> None:
        """stop scheduled syncs, syncs in progress keep running"""
        if self.sync_timer is not None:
            self.sync_timer.stop()
            self.sync_timer = None

    def start_auto_poll(self, period: float = DEFAULT_POLL_PERIOD_SECONDS) -> None:
        """poll every source every period seconds, replacing any running schedule"""
        self.stop_auto_poll()
        self.poll_timer = RecurringTimer(f"{self.name}_auto_poll", period, self.poll_all)
        self.poll_timer.start()

    def stop_auto_poll(self) -> None:
        """stop scheduled polls, polls in progress keep running"""
        if self.poll_timer is not None:
            self.poll_timer.stop()
            self.poll_timer = None

    async def close(self) -> None:
        """stop both timers and wait for pipeline tasks already started"""
        self.stop_auto_sync()
        self.stop_auto_poll()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
