"""Read/control surface for a management web layer."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .config import CteMonitorConfig
from .contracts import (
    HealthStatus,
    MonitorStats,
    RecordId,
    StoreStats,
    TaskView,
    WaitingFile,
    utcnow,
)
from .errors import InvalidIntervalError
from .execute import TaskExecutor
from .monitor import DatabaseMonitor
from .store import RecordStore

logger = logging.getLogger(__name__)


class ManagementFacade:
    """Exposes scheduler and executor state and controls.

    Carries no authentication of its own.
    """

    def __init__(
        self,
        store: RecordStore,
        monitor: DatabaseMonitor,
        executor: TaskExecutor,
        config: Optional[CteMonitorConfig] = None,
    ) -> None:
        self._store = store
        self._monitor = monitor
        self._executor = executor
        self._config = config or CteMonitorConfig()

    async def status(self) -> Dict[str, Any]:
        """Snapshot of monitor, store connection and store counters."""
        db_stats: Optional[StoreStats] = None
        try:
            db_stats = await self._store.get_stats()
        except Exception as e:
            logger.warning(f"Could not read store stats: {e}")

        return {
            "status": "online",
            "monitor": self._monitor.get_stats(),
            "database": {
                "connected": self._store.connected,
                "table_name": "cte_documentos",
                "stats": db_stats,
            },
            "processing": self._executor.get_processing_stats(),
            "timestamp": utcnow(),
        }

    def monitor_stats(self) -> MonitorStats:
        return self._monitor.get_stats()

    def start_monitor(self) -> str:
        self._monitor.start()
        return "Monitor started"

    def stop_monitor(self) -> str:
        self._monitor.stop()
        return "Monitor stopped"

    async def restart_monitor(self) -> str:
        await self._monitor.restart()
        return "Monitor restarted"

    def update_interval(self, interval_ms: int) -> str:
        """Validate and apply a new poll interval in milliseconds.

        Raises:
            InvalidIntervalError: If outside the configured min/max range.
        """
        bounds = self._config.monitor
        if not (bounds.min_interval <= interval_ms <= bounds.max_interval):
            raise InvalidIntervalError(
                f"Interval must be between {bounds.min_interval // 1000} and "
                f"{bounds.max_interval // 1000} seconds"
            )
        self._config.api.check_interval = interval_ms
        self._monitor.update_interval(interval_ms)
        return f"Interval updated to {interval_ms / 1000}s"

    async def insert_test_record(
        self, payload: Optional[Dict[str, Any]] = None
    ) -> RecordId:
        return await self._store.insert_test_record(payload or {})

    async def test_connection(self) -> HealthStatus:
        return await self._store.health_check()

    async def database_stats(self) -> StoreStats:
        return await self._store.get_stats()

    def running_tasks(self) -> List[TaskView]:
        return self._executor.get_running_tasks()

    def waiting_files(self) -> List[WaitingFile]:
        return self._executor.get_processing_stats().files
