"""Core data contracts for the CT-e monitor."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RecordId = Union[int, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_ms(since: datetime, now: Optional[datetime] = None) -> int:
    """Milliseconds between ``since`` and ``now`` (defaults to the current time)."""
    now = now or utcnow()
    return int((now - since).total_seconds() * 1000)


class RecordStatus(str, Enum):
    """Status values as stored in ``cte_documentos``."""

    PENDING = "pendente"
    COMPLETED = "emitido"
    CANCELLED = "cancelado"


class Record(BaseModel):
    """One CT-e document row fetched from the record store.

    ``status`` stays a plain string so rows carrying a state this service
    does not know yet still parse and reach the executor.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: RecordId
    external_key: Optional[str] = Field(default=None, alias="numero_cte")
    status: str = RecordStatus.PENDING.value
    processado: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WatchEntry(BaseModel):
    """A relocated artifact waiting for its processed counterpart."""

    record_id: RecordId
    external_key: str
    derived_key: str
    expected_artifact_path: str
    registered_at: datetime = Field(default_factory=utcnow)

    def elapsed_ms(self, now: Optional[datetime] = None) -> int:
        return elapsed_ms(self.registered_at, now)


class RunningTask(BaseModel):
    task_id: str
    record_id: RecordId
    start_time: datetime = Field(default_factory=utcnow)


class TaskResult(BaseModel):
    """Outcome of one ``TaskExecutor.execute_task`` call."""

    success: bool
    record_id: RecordId
    error: Optional[str] = None
    attempts: int = 1


class TaskView(BaseModel):
    """Row of the running/awaiting task listing."""

    task_id: str
    record_id: RecordId
    start_time: datetime
    duration_ms: int
    type: Literal["processing", "waiting_processing"]
    external_key: Optional[str] = None
    cnpj: Optional[str] = None


class WaitingFile(BaseModel):
    record_id: RecordId
    external_key: str
    cnpj: str
    waiting_ms: int


class ProcessingStats(BaseModel):
    files_waiting: int
    files: List[WaitingFile] = Field(default_factory=list)
    timed_out: List[WatchEntry] = Field(default_factory=list)


class MonitorStats(BaseModel):
    is_running: bool
    last_check: Optional[datetime] = None
    processed_count: int = 0
    check_interval: int
    running_tasks: List[TaskView] = Field(default_factory=list)


class StoreStats(BaseModel):
    """Counters reported by the store's stats endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total: int = 0
    pending: int = Field(default=0, alias="pendentes")
    completed: int = Field(default=0, alias="emitidos")
    cancelled: int = Field(default=0, alias="cancelados")
    table_name: str = "cte_documentos"


class HealthStatus(BaseModel):
    success: bool
    message: str


def default_test_payload(extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Body sent to the store when inserting a test record."""
    return {
        "status": RecordStatus.PENDING.value,
        "prioridade": 5,
        "dados": {
            "validarDocumento": True,
            "gerarXML": True,
            "enviarSEFAZ": True,
            **(extra or {}),
        },
    }
