"""Record store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CteMonitorConfig, load_config
from .base import RecordStore
from .http import HttpRecordStore
from .inmemory import InMemoryRecordStore


def get_record_store(
    backend: Optional[str] = None, config: Optional[CteMonitorConfig] = None
) -> RecordStore:
    """Factory function to get the configured record store."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("CTEMONITOR_STORE")
        or config.store.backend
    ).lower()

    if backend == "http":
        return HttpRecordStore(config.api)
    elif backend == "inmemory":
        return InMemoryRecordStore()
    else:
        raise ValueError(f"Unsupported record store backend: {backend}")


__all__ = ["RecordStore", "HttpRecordStore", "InMemoryRecordStore", "get_record_store"]
