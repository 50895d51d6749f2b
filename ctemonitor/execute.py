"""Task execution engine for CT-e records."""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional

from anyio import Path
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .artifacts import (
    derive_sub_identifier,
    processed_artifact_path,
    read_authorization,
    relocate_artifact,
)
from .config import CteMonitorConfig, XmlProcessingConfig
from .contracts import (
    ProcessingStats,
    Record,
    RecordId,
    RecordStatus,
    RunningTask,
    TaskResult,
    TaskView,
    WatchEntry,
    elapsed_ms,
    utcnow,
)
from .errors import MalformedKeyError
from .registry import ProcessingRegistry
from .store import RecordStore
from .utils.periodic import PeriodicTask
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Drives one record through relocation and the processed-file watch.

    Owns the processing registry, the retry counters and the running-task
    bookkeeping. ``execute_task`` never raises; failures come back as a
    ``TaskResult`` with ``success=False``.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[CteMonitorConfig] = None,
        registry: Optional[ProcessingRegistry] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self._store = store
        self._config = config or CteMonitorConfig()
        self.registry = registry or ProcessingRegistry()
        self._running_tasks: Dict[str, RunningTask] = {}
        self._retry_counters: Dict[RecordId, int] = {}
        self._watch_task = PeriodicTask(
            "processed-files",
            self.xml.check_processed_interval,
            self.check_processed_files,
            scheduler,
        )

    @property
    def xml(self) -> XmlProcessingConfig:
        return self._config.xml_processing

    @property
    def active_task_count(self) -> int:
        return len(self._running_tasks)

    def retry_count(self, record_id: RecordId) -> int:
        return self._retry_counters.get(record_id, 0)

    async def setup_directories(self) -> None:
        """Create the source folder and the CNPJ base folder."""
        for folder in (self.xml.source_folder, self.xml.cnpj_base_path):
            await Path(folder).mkdir(parents=True, exist_ok=True)
        logger.info("XML directories configured")

    # ------------------------------------------------------------------
    async def execute_task(self, record: Record) -> TaskResult:
        """Run the lifecycle for ``record`` with bounded fixed-delay retries."""
        max_attempts = max(self._config.tasks.retry_attempts, 1)
        attempt = 0

        while True:
            attempt += 1
            task_id = f"task_{record.id}_{int(time.time() * 1000)}"
            logger.info(f"Starting task for record ID: {record.id}")
            self._running_tasks[task_id] = RunningTask(
                task_id=task_id, record_id=record.id
            )
            try:
                await self.process_record(record)
            except MalformedKeyError as e:
                logger.error(f"Record {record.id} abandoned: {e}")
                self._retry_counters.pop(record.id, None)
                return TaskResult(
                    success=False, record_id=record.id, error=str(e), attempts=attempt
                )
            except Exception as e:
                logger.error(f"Task failed for record {record.id}: {e}")
                failures = self._retry_counters.get(record.id, 0) + 1
                if failures >= max_attempts:
                    logger.error(
                        f"Giving up on CTE {record.external_key} (ID: {record.id}) "
                        f"after {failures} attempts"
                    )
                    self._retry_counters.pop(record.id, None)
                    return TaskResult(
                        success=False,
                        record_id=record.id,
                        error=str(e),
                        attempts=attempt,
                    )
                self._retry_counters[record.id] = failures
                logger.warning(
                    f"Retry {failures} of {max_attempts - 1} for CTE "
                    f"{record.external_key} (ID: {record.id})"
                )
            else:
                self._retry_counters.pop(record.id, None)
                logger.info(f"Task finished for record ID: {record.id}")
                return TaskResult(success=True, record_id=record.id, attempts=attempt)
            finally:
                self._running_tasks.pop(task_id, None)

            await schedule_retry(self._config.tasks.retry_delay)

    async def process_record(self, record: Record) -> None:
        """Dispatch on status. Unknown statuses are a logged no-op."""
        logger.info(f"Processing CTE document: ID={record.id}, Status={record.status}")

        if record.status != RecordStatus.PENDING.value:
            logger.warning(f"Unknown status {record.status!r} for record {record.id}")
            return

        cnpj = self.extract_cnpj(record.external_key)
        logger.info(f"CNPJ extracted: {cnpj}")
        await self.handle_pending_document(record, cnpj)

    def extract_cnpj(self, access_key: Optional[str]) -> str:
        return derive_sub_identifier(access_key)

    async def handle_pending_document(self, record: Record, cnpj: str) -> None:
        logger.info(f"Handling pending CTE {record.external_key} (CNPJ: {cnpj})")
        await self.move_to_cnpj_folder(record, cnpj)
        await self.wait_for_processed_file(record, cnpj)

    async def move_to_cnpj_folder(self, record: Record, cnpj: str) -> Path:
        return await relocate_artifact(
            self.xml.source_folder,
            self.xml.cnpj_base_path,
            self.xml.processed_folder,
            record.external_key,
            cnpj,
        )

    async def wait_for_processed_file(self, record: Record, cnpj: str) -> WatchEntry:
        processed_path = processed_artifact_path(
            self.xml.cnpj_base_path,
            self.xml.processed_folder,
            record.external_key,
            cnpj,
        )
        logger.info(f"Waiting for processed file: {processed_path}")
        entry = WatchEntry(
            record_id=record.id,
            external_key=record.external_key,
            derived_key=cnpj,
            expected_artifact_path=processed_path,
        )
        self.registry.register(entry)
        self.start_processed_file_monitoring()
        return entry

    # ------------------------------------------------------------------
    @property
    def watching(self) -> bool:
        return self._watch_task.running

    def start_processed_file_monitoring(self) -> None:
        if self.watching:
            return
        self._watch_task.start()
        logger.info("Processed file monitoring started")

    def stop_processed_file_monitoring(self) -> None:
        if self.watching:
            self._watch_task.stop()
            logger.info("Processed file monitoring stopped")

    async def wait_idle(self) -> None:
        """Wait for an in-flight processed-file scan, if any."""
        await self._watch_task.wait_idle()

    async def check_processed_files(self) -> None:
        """Scan every watch entry once."""
        if not len(self.registry):
            return

        logger.info(f"Checking {len(self.registry)} file(s) awaiting processing...")
        for entry in self.registry:
            try:
                await self._check_entry(entry)
            except Exception as e:
                logger.error(
                    f"Error checking processed file for CTE {entry.external_key}: {e}"
                )

    async def _check_entry(self, entry: WatchEntry) -> None:
        authorized = await read_authorization(entry.expected_artifact_path)

        if authorized is None:
            if entry.elapsed_ms() > self.xml.processing_timeout:
                logger.error(
                    f"Timed out waiting for processed CTE {entry.external_key}"
                )
                self.registry.expire(entry.record_id)
            return

        logger.info(
            f"Processed file found for CTE {entry.external_key}: "
            f"{entry.expected_artifact_path}"
        )
        if not authorized:
            logger.warning(f"CTE {entry.external_key} processed but not authorized")
            return

        await self._store.mark_completed(entry.record_id)
        # a later tick may have re-registered the record during the update
        if self.registry.get(entry.record_id) is entry:
            self.registry.remove(entry.record_id)
        logger.info(f"CTE {entry.external_key} marked as emitido")

    # ------------------------------------------------------------------
    def get_processing_stats(self) -> ProcessingStats:
        return ProcessingStats(
            files_waiting=len(self.registry),
            files=self.registry.waiting_files(),
            timed_out=self.registry.timed_out,
        )

    def get_running_tasks(self) -> List[TaskView]:
        """Active runs followed by files awaiting processing."""
        now = utcnow()
        tasks = [
            TaskView(
                task_id=task_id,
                record_id=task.record_id,
                start_time=task.start_time,
                duration_ms=elapsed_ms(task.start_time, now),
                type="processing",
            )
            for task_id, task in self._running_tasks.items()
        ]
        tasks.extend(
            TaskView(
                task_id=f"waiting_{entry.record_id}",
                record_id=entry.record_id,
                start_time=entry.registered_at,
                duration_ms=entry.elapsed_ms(now),
                type="waiting_processing",
                external_key=entry.external_key,
                cnpj=entry.derived_key,
            )
            for entry in self.registry
        )
        return tasks

    def cleanup(self) -> None:
        self.stop_processed_file_monitoring()
        self.registry.clear()
        self._running_tasks.clear()
        self._retry_counters.clear()
