"""Base record store interface."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional

from ..contracts import HealthStatus, Record, RecordId, StoreStats
from ..errors import ConnectivityError

logger = logging.getLogger(__name__)


class RecordStore(metaclass=abc.ABCMeta):
    """Abstract client for the remote ``cte_documentos`` store."""

    def __init__(self) -> None:
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Probe the store and run the idempotent schema setup.

        Raises:
            ConnectivityError: If the probe fails. ``connected`` stays False.
        """
        logger.info("Connecting to record store...")
        probe = await self.health_check()
        if not probe.success:
            self._connected = False
            logger.error(f"Record store unreachable: {probe.message}")
            raise ConnectivityError(probe.message)

        self._connected = True
        logger.info("Connected to record store")
        try:
            await self.setup()
        except Exception as e:
            logger.warning(f"Table setup failed (it may already exist): {e}")

    async def close(self) -> None:
        """Release the connection (flag only by default)."""
        self._connected = False
        logger.info("Record store client disconnected")

    async def setup(self) -> None:
        """Create the backing table if absent (no-op by default)."""
        pass

    @abc.abstractmethod
    async def health_check(self) -> HealthStatus:
        """Probe reachability. Never raises."""
        raise NotImplementedError

    @abc.abstractmethod
    async def fetch_pending(self, limit: int = 10) -> List[Record]:
        """Return up to ``limit`` pending records ordered by access key."""
        raise NotImplementedError

    @abc.abstractmethod
    async def mark_completed(self, record_id: RecordId) -> bool:
        """Set the record status to ``emitido``. Must be idempotent."""
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_test_record(
        self, payload: Optional[Dict[str, Any]] = None
    ) -> RecordId:
        """Insert a pending record for manual testing and return its id."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_stats(self) -> StoreStats:
        """Return table counters."""
        raise NotImplementedError


def order_pending(records: List[Record], limit: int) -> List[Record]:
    """Sort by access key ascending and cap at ``limit``."""
    ordered = sorted(records, key=lambda r: r.external_key or "")
    return ordered[:limit]
