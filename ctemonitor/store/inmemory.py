"""In-memory record store for testing."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..contracts import (
    HealthStatus,
    Record,
    RecordId,
    RecordStatus,
    StoreStats,
    default_test_payload,
    utcnow,
)
from ..errors import UpdateError
from .base import RecordStore, order_pending


class InMemoryRecordStore(RecordStore):
    """Dict-backed store for unit tests and dry runs.

    Data is not persisted across process restarts. Every completion call is
    recorded in ``completed_calls``, including repeated ones.
    """

    def __init__(self, records: Optional[List[Record]] = None) -> None:
        super().__init__()
        self._records: Dict[RecordId, Record] = {}
        self._next_id = 1
        self.completed_calls: List[RecordId] = []
        self.setup_calls = 0
        self.reachable = True
        for record in records or []:
            self.add(record)

    def add(self, record: Record) -> Record:
        self._records[record.id] = record
        if isinstance(record.id, int) and record.id >= self._next_id:
            self._next_id = record.id + 1
        return record

    def get(self, record_id: RecordId) -> Optional[Record]:
        return self._records.get(record_id)

    async def setup(self) -> None:
        self.setup_calls += 1

    async def health_check(self) -> HealthStatus:
        if not self.reachable:
            return HealthStatus(success=False, message="In-memory store offline")
        return HealthStatus(success=True, message="In-memory store OK")

    async def fetch_pending(self, limit: int = 10) -> List[Record]:
        if not self.connected:
            await self.connect()
        pending = [
            r for r in self._records.values() if r.status == RecordStatus.PENDING.value
        ]
        return order_pending(pending, limit)

    async def mark_completed(self, record_id: RecordId) -> bool:
        self.completed_calls.append(record_id)
        record = self._records.get(record_id)
        if record is None:
            raise UpdateError(
                f"Record {record_id} not found", status_code=404, body="not found"
            )
        record.status = RecordStatus.COMPLETED.value
        record.processado = True
        record.updated_at = utcnow()
        return True

    async def insert_test_record(
        self, payload: Optional[Dict[str, Any]] = None
    ) -> RecordId:
        body = default_test_payload(payload)
        record_id = self._next_id
        now = utcnow()
        self.add(
            Record(
                id=record_id,
                external_key=body["dados"].get("numero_cte"),
                status=body["status"],
                created_at=now,
                updated_at=now,
            )
        )
        return record_id

    async def get_stats(self) -> StoreStats:
        statuses = [r.status for r in self._records.values()]
        return StoreStats(
            total=len(statuses),
            pending=statuses.count(RecordStatus.PENDING.value),
            completed=statuses.count(RecordStatus.COMPLETED.value),
            cancelled=statuses.count(RecordStatus.CANCELLED.value),
            table_name="cte_documentos (in memory)",
        )
