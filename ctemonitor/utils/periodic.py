"""Repeating job on an APScheduler interval trigger."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``callback`` every ``interval_ms`` as a job on ``scheduler``.

    The job is added with ``max_instances=1`` and ``coalesce=True`` so a tick
    is skipped while the previous one is still running. ``stop()`` removes
    the job and never cancels a tick already in flight.
    """

    def __init__(
        self,
        name: str,
        interval_ms: int,
        callback: Callable[[], Awaitable[None]],
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self.name = name
        self.interval_ms = interval_ms
        self.scheduler = scheduler or AsyncIOScheduler()
        self._callback = callback
        self._job: Optional[Job] = None
        self._ticks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._job is not None

    @property
    def busy(self) -> bool:
        return bool(self._ticks)

    def _trigger(self) -> IntervalTrigger:
        return IntervalTrigger(seconds=self.interval_ms / 1000)

    def start(self, run_immediately: bool = False) -> None:
        """Add the job, starting the scheduler if needed. A no-op if armed."""
        if self.running:
            return
        if not self.scheduler.running:
            self.scheduler.start()

        options: Dict[str, Any] = {}
        if run_immediately:
            options["next_run_time"] = datetime.now()
        self._job = self.scheduler.add_job(
            self._run_tick,
            trigger=self._trigger(),
            id=self.name,
            name=self.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            **options,
        )

    def stop(self) -> None:
        if self._job is not None:
            self._job.remove()
            self._job = None

    def reschedule(self, interval_ms: int) -> None:
        """Store the new period; re-arms the job only while running."""
        self.interval_ms = interval_ms
        if self._job is not None:
            self._job.reschedule(self._trigger())

    async def wait_idle(self) -> None:
        """Wait for in-flight ticks to finish."""
        current = asyncio.current_task()
        pending = [task for task in self._ticks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_tick(self) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._ticks.add(task)
        try:
            await self._callback()
        except Exception:
            logger.exception(f"{self.name}: tick failed")
        finally:
            self._ticks.discard(task)
