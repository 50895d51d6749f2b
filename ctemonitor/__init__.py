"""ctemonitor: polls a record store and drives CT-e XML documents to emission."""

from .app import MonitorApp
from .contracts import Record, RecordStatus, TaskResult, WatchEntry
from .execute import TaskExecutor
from .facade import ManagementFacade
from .monitor import DatabaseMonitor
from .registry import ProcessingRegistry
from .store import get_record_store

__version__ = "0.1.0"
__all__ = [
    "DatabaseMonitor",
    "ManagementFacade",
    "MonitorApp",
    "ProcessingRegistry",
    "Record",
    "RecordStatus",
    "TaskExecutor",
    "TaskResult",
    "WatchEntry",
    "get_record_store",
]
