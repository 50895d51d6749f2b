"""HTTP record store backed by the ``cte_documentos`` REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import ApiConfig
from ..contracts import (
    HealthStatus,
    Record,
    RecordId,
    RecordStatus,
    StoreStats,
    default_test_payload,
    utcnow,
)
from ..errors import FetchError, StoreError, UpdateError
from .base import RecordStore, order_pending

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.text
    except Exception:
        return "Could not read server response"


class HttpRecordStore(RecordStore):
    """Record store client speaking JSON over HTTP(S)."""

    def __init__(
        self,
        config: Optional[ApiConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self.config = config or ApiConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(
        self, error_cls: type[StoreError], method: str, path: str, **kwargs: Any
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            error_cls: On transport failure or a non-2xx answer, carrying the
                status code and body text.
        """
        url = self._url(path)
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {url} failed: {e}") from e

        if response.is_error:
            body = _error_detail(response)
            raise error_cls(
                f"HTTP {response.status_code}: "
                f"{response.reason_phrase or 'Unknown error'} - {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            return response.json()
        except ValueError as e:
            raise error_cls(
                f"Invalid JSON from {url}: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        await super().close()

    async def setup(self) -> None:
        result = await self._request(
            StoreError, "POST", self.config.endpoints.setup
        )
        message = result.get("message") if isinstance(result, dict) else result
        logger.info(f"Table setup finished: {message}")

    async def health_check(self) -> HealthStatus:
        url = self._url(self.config.endpoints.stats)
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            return HealthStatus(success=False, message=f"Connection error: {e}")
        if response.is_error:
            return HealthStatus(
                success=False,
                message=f"Store not reachable: HTTP {response.status_code}",
            )
        return HealthStatus(success=True, message="Record store API reachable")

    async def fetch_pending(self, limit: int = 10) -> List[Record]:
        if not self.connected:
            await self.connect()

        path = self.config.endpoints.pending
        logger.info(f"Requesting pending records from {self._url(path)}")
        try:
            payload = await self._request(
                FetchError, "GET", path, params={"limit": limit}
            )
        except FetchError as e:
            if e.status_code == 500:
                logger.error("HTTP 500 fetching pending records. Possible causes:")
                logger.error("1. Table cte_documentos does not exist")
                logger.error(f"2. SQL error behind {path}")
                logger.error("3. Database connection problem")
                logger.error("4. Insufficient database permissions")
                logger.error(
                    f"Fix: POST {self.config.endpoints.setup} to create the table"
                )
            else:
                logger.error(f"Error fetching pending records: {e}")
            raise

        if not isinstance(payload, list):
            raise FetchError(
                f"Expected a list of records, got {type(payload).__name__}",
                body=str(payload),
            )
        records = order_pending([Record.model_validate(item) for item in payload], limit)
        logger.info(f"Received {len(records)} record(s) from the store")
        for record in records:
            logger.debug(
                f"  - ID: {record.id}, Status: {record.status}, "
                f"Processed: {record.processado}"
            )
        return records

    async def mark_completed(self, record_id: RecordId) -> bool:
        path = self.config.endpoints.update_status.replace("{id}", str(record_id))
        body = {
            "status": RecordStatus.COMPLETED.value,
            "processado": True,
            "updated_at": utcnow().isoformat(),
        }
        try:
            result = await self._request(UpdateError, "PUT", path, json=body)
        except UpdateError as e:
            logger.error(f"Error marking record {record_id} as completed: {e}")
            raise
        logger.info(f"Record ID {record_id} marked as emitido")
        if isinstance(result, dict):
            return bool(result.get("success", True))
        return True

    async def insert_test_record(
        self, payload: Optional[Dict[str, Any]] = None
    ) -> RecordId:
        result = await self._request(
            StoreError,
            "POST",
            self.config.endpoints.test_insert,
            json=default_test_payload(payload),
        )
        if not isinstance(result, dict) or "id" not in result:
            raise StoreError(
                "Test insert response carried no record id", body=str(result)
            )
        record_id = result["id"]
        logger.info(f"Inserted test record with ID {record_id}")
        return record_id

    async def get_stats(self) -> StoreStats:
        if not self.connected:
            await self.connect()
        result = await self._request(FetchError, "GET", self.config.endpoints.stats)
        stats = StoreStats.model_validate(result)
        stats.table_name = "cte_documentos (via API)"
        return stats
