"""Periodic scheduler polling the record store for pending CT-e documents."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import CteMonitorConfig
from .contracts import MonitorStats, Record, utcnow
from .execute import TaskExecutor
from .store import RecordStore
from .utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)


class DatabaseMonitor:
    """Two-state (stopped/running) driver of the fetch-and-process tick."""

    def __init__(
        self,
        store: RecordStore,
        executor: TaskExecutor,
        config: Optional[CteMonitorConfig] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._config = config or CteMonitorConfig()
        self.interval_ms = self._config.api.check_interval
        self.is_running = False
        self.last_check: Optional[datetime] = None
        self.processed_count = 0
        self._timer = PeriodicTask(
            "database-monitor", self.interval_ms, self.check_database, scheduler
        )

    def start(self) -> None:
        """Arm the timer and run one tick right away. Needs a running loop."""
        if self.is_running:
            logger.warning("Monitor is already running")
            return

        logger.info("Starting database monitor...")
        self.is_running = True
        self.last_check = utcnow()
        self._timer.interval_ms = self.interval_ms
        self._timer.start(run_immediately=True)
        logger.info(f"Monitor started. Checking every {self.interval_ms}ms")

    def stop(self) -> None:
        """Prevent future ticks. An in-flight tick runs to completion."""
        if not self.is_running:
            logger.warning("Monitor is not running")
            return

        logger.info("Stopping database monitor...")
        self.is_running = False
        self._timer.stop()
        logger.info("Monitor stopped")

    async def restart(self) -> None:
        logger.info("Restarting monitor...")
        self.stop()
        await asyncio.sleep(self._config.monitor.restart_delay / 1000)
        self.start()

    def update_interval(self, interval_ms: int) -> None:
        """Change the tick period; re-arms the timer only while running.

        The caller is responsible for range validation.
        """
        logger.info(f"Updating interval from {self.interval_ms}ms to {interval_ms}ms")
        self.interval_ms = interval_ms
        self._timer.reschedule(interval_ms)
        if self.is_running:
            logger.info(f"Interval updated to {interval_ms / 1000}s")

    async def wait_idle(self) -> None:
        """Wait for an in-flight tick, if any."""
        await self._timer.wait_idle()

    async def check_database(self) -> None:
        """One tick: fetch pending records and process them in order."""
        self.last_check = utcnow()
        logger.info("Checking store for pending documents...")
        try:
            records = await self._store.fetch_pending(self._config.api.fetch_limit)
        except Exception as e:
            logger.error(f"Error while checking the store: {e}")
            return

        if not records:
            logger.info("No records found for processing")
            return

        logger.info(f"Found {len(records)} record(s) to process")
        for record in records:
            await self.process_record(record)

    async def process_record(self, record: Record) -> bool:
        """Run the executor for one record; never raises."""
        label = f"{record.id}" + (
            f" (CTE: {record.external_key})" if record.external_key else ""
        )
        try:
            logger.info(f"Processing record ID: {record.id}")
            result = await self._executor.execute_task(record)
            if not result.success:
                logger.error(f"Processing failed for record {label}: {result.error}")
                return False

            await self._store.mark_completed(record.id)
            self.processed_count += 1
            logger.info(f"Record {label} processed successfully")
            return True
        except Exception as e:
            logger.error(f"Error processing record {record.id}: {e}")
            return False

    def get_stats(self) -> MonitorStats:
        return MonitorStats(
            is_running=self.is_running,
            last_check=self.last_check,
            processed_count=self.processed_count,
            check_interval=self.interval_ms,
            running_tasks=self._executor.get_running_tasks(),
        )
