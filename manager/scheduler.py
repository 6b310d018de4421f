"""
Background scheduler for periodic extraction.

Uses APScheduler to re-run the extract stage over the execution root on
a fixed interval, so probes behave like a cron driven collector.

Design principles:
- Non-overlapping: a run that is still going makes the next tick a no-op
- Resilient: a failed run is logged and the schedule continues
- Fresh output per run: every run opens its own sink and record stream
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.logging import get_logger
from extractor.runner import ExtractionRunner, RunSummary
from transport.sinks import RecordSink


logger = get_logger(__name__)


SinkFactory = Callable[[], Awaitable[RecordSink]]


class ExtractionScheduler:
    """
    Periodic driver for the extract stage.

    Usage:
        scheduler = ExtractionScheduler(root, lambda: open_sink(tcp=addr), interval_seconds=60)
        await scheduler.start()
        # ... process runs ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        root: Union[str, Path],
        sink_factory: SinkFactory,
        interval_seconds: Optional[int] = None,
        max_concurrency: Optional[int] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            root: Execution root to run on every tick
            sink_factory: Coroutine function opening the output of one run
            interval_seconds: Seconds between runs (default from config)
            max_concurrency: Max processes per batch (default from config)
        """
        self.root = root
        self.sink_factory = sink_factory
        self.interval = interval_seconds or settings.extract_interval_seconds or 60
        self.max_concurrency = max_concurrency or settings.extract_max_concurrency

        self.runs = 0
        self.last_summary: Optional[RunSummary] = None

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False
        self._run_lock = asyncio.Lock()
        self._initial: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """
        Start the background scheduler.

        The first run starts immediately instead of waiting one interval.
        """
        if self._scheduler is not None:
            logger.warning("Scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._run_extraction,
            trigger=IntervalTrigger(seconds=self.interval),
            id="run_extraction",
            name="Run extraction",
            max_instances=1,  # Prevent overlapping runs
            replace_existing=True,
        )
        self._scheduler.start()

        logger.info(
            "Scheduler started",
            root=str(self.root),
            interval_seconds=self.interval,
            max_concurrency=self.max_concurrency,
        )

        self._initial = asyncio.create_task(self._run_extraction())

    async def shutdown(self) -> None:
        """
        Gracefully shutdown the scheduler.

        Waits for the current run to complete before stopping.
        """
        if self._scheduler is None:
            return

        logger.info("Shutting down scheduler...")

        async with self._run_lock:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        if self._initial is not None:
            await self._initial
            self._initial = None

        logger.info("Scheduler shut down", runs=self.runs)

    async def _run_extraction(self) -> None:
        """
        Single run: open the output, run every executable, close the output.

        This is called periodically by APScheduler.
        """
        if self._is_running:
            logger.debug("Run already in progress, skipping")
            return

        async with self._run_lock:
            self._is_running = True
            try:
                await self._do_run()
            except Exception as e:
                logger.error(
                    "Extraction run failed",
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._is_running = False

    async def _do_run(self) -> None:
        sink = await self.sink_factory()
        try:
            runner = ExtractionRunner(sink, max_concurrency=self.max_concurrency)
            self.last_summary = await runner.run(self.root)
        finally:
            await sink.close()
        self.runs += 1

    async def trigger_run(self) -> None:
        """
        Manually trigger a run.

        Useful for testing or to collect immediately after a deploy.
        """
        await self._run_extraction()

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._scheduler is not None and self._scheduler.running
