"""Processing registry: relocated artifacts awaiting their processed copy."""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterator, List, Optional

from .contracts import RecordId, WaitingFile, WatchEntry


class ProcessingRegistry:
    """Keyed map of watch entries, at most one per record id.

    Also keeps a bounded history of entries dropped on timeout so the
    management facade can show them.
    """

    def __init__(self, timeout_history: int = 50) -> None:
        self._entries: Dict[RecordId, WatchEntry] = {}
        self._timed_out: Deque[WatchEntry] = deque(maxlen=timeout_history)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._entries

    def __iter__(self) -> Iterator[WatchEntry]:
        return iter(list(self._entries.values()))

    def register(self, entry: WatchEntry) -> None:
        """Add or replace the entry for ``entry.record_id``."""
        self._entries[entry.record_id] = entry

    def get(self, record_id: RecordId) -> Optional[WatchEntry]:
        return self._entries.get(record_id)

    def remove(self, record_id: RecordId) -> Optional[WatchEntry]:
        return self._entries.pop(record_id, None)

    def expire(self, record_id: RecordId) -> Optional[WatchEntry]:
        entry = self._entries.pop(record_id, None)
        if entry is not None:
            self._timed_out.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    @property
    def timed_out(self) -> List[WatchEntry]:
        return list(self._timed_out)

    def waiting_files(self, now: Optional[datetime] = None) -> List[WaitingFile]:
        return [
            WaitingFile(
                record_id=entry.record_id,
                external_key=entry.external_key,
                cnpj=entry.derived_key,
                waiting_ms=entry.elapsed_ms(now),
            )
            for entry in self._entries.values()
        ]
