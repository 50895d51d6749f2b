"""Process bootstrap: wiring, signal handling and graceful shutdown."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import CteMonitorConfig, load_config
from .execute import TaskExecutor
from .facade import ManagementFacade
from .monitor import DatabaseMonitor
from .store import RecordStore, get_record_store

logger = logging.getLogger(__name__)

SHUTDOWN_POLL_SECONDS = 1.0


class MonitorApp:
    """Owns the store client, executor, monitor and facade of one process."""

    def __init__(
        self,
        config: Optional[CteMonitorConfig] = None,
        store: Optional[RecordStore] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store or get_record_store(config=self.config)
        self.scheduler = AsyncIOScheduler()
        self.executor = TaskExecutor(self.store, self.config, scheduler=self.scheduler)
        self.monitor = DatabaseMonitor(
            self.store, self.executor, self.config, scheduler=self.scheduler
        )
        self.facade = ManagementFacade(
            self.store, self.monitor, self.executor, self.config
        )
        self.is_shutting_down = False
        self._stopped: Optional[asyncio.Event] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self.exit_code = 0

    async def initialize(self) -> None:
        """Connect to the store and prepare folders.

        Raises:
            ConnectivityError: If the store is unreachable.
        """
        logger.info("Initializing CT-e monitor...")
        await self.store.connect()
        await self.executor.setup_directories()
        logger.info("Initialization finished")

    async def run(self, install_handlers: bool = True) -> int:
        """Start monitoring and block until a shutdown completes."""
        self._stopped = asyncio.Event()
        if install_handlers:
            self._install_handlers(asyncio.get_running_loop())

        self.monitor.start()
        logger.info("Monitor running")
        await self._stopped.wait()
        return self.exit_code

    def _install_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(
                    sig, lambda s=sig: self.request_shutdown(s.name)
                )
            except NotImplementedError:
                logger.debug(f"Signal handlers unsupported for {sig.name}")
        loop.set_exception_handler(self._handle_loop_exception)

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]
    ) -> None:
        error = context.get("exception") or context.get("message")
        logger.error(f"Unhandled error: {error}")
        self.exit_code = 1
        self.request_shutdown("unhandled exception")

    def request_shutdown(self, reason: str) -> None:
        if self.is_shutting_down or self._shutdown_task is not None:
            return
        self._shutdown_task = asyncio.get_running_loop().create_task(
            self.shutdown(reason)
        )

    async def shutdown(self, reason: str = "shutdown") -> None:
        """Stop polling, drain running tasks within the timeout, close."""
        if self.is_shutting_down:
            return
        self.is_shutting_down = True
        logger.info(f"Received {reason}. Starting graceful shutdown...")

        if self.monitor.is_running:
            self.monitor.stop()

        try:
            await asyncio.wait_for(
                self._drain(), timeout=self.config.monitor.shutdown_timeout / 1000
            )
        except asyncio.TimeoutError:
            logger.warning("Shutdown timed out with tasks still running")
            self.exit_code = 1

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.executor.cleanup()
        await self.store.close()
        logger.info("Shutdown complete")
        if self._stopped is not None:
            self._stopped.set()

    async def _drain(self) -> None:
        await self.monitor.wait_idle()
        while self.executor.active_task_count > 0:
            logger.info("Waiting for running tasks to finish...")
            await asyncio.sleep(SHUTDOWN_POLL_SECONDS)
        self.executor.stop_processed_file_monitoring()
        await self.executor.wait_idle()


async def serve(config: Optional[CteMonitorConfig] = None) -> int:
    app = MonitorApp(config)
    await app.initialize()
    return await app.run()
