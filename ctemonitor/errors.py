"""
Error classes for ctemonitor.

Retry classification happens at the executor boundary:
- MalformedKeyError: never retried, the record is abandoned for this run
- ArtifactMissingError and any other step failure: retried up to the ceiling
- StoreError subclasses: logged by the scheduler, never abort the process
"""

from __future__ import annotations

from typing import Optional


class MonitorError(Exception):
    """Base exception for ctemonitor."""
    pass


class ConnectivityError(MonitorError):
    """The record store did not answer the reachability probe."""
    pass


class StoreError(MonitorError):
    """
    Non-2xx answer or transport failure talking to the record store.

    ``status_code`` is ``None`` when the request never got a response.
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, body: str = ""
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class FetchError(StoreError):
    pass


class UpdateError(StoreError):
    pass


class MalformedKeyError(MonitorError):
    """The access key is not 44 characters or its CNPJ slice is not numeric."""

    def __init__(self, key: Optional[str], reason: str) -> None:
        super().__init__(f"Malformed access key {key!r}: {reason}")
        self.key = key


class ArtifactMissingError(MonitorError):
    """The source XML for a record is not in the source folder."""

    def __init__(self, path: str) -> None:
        super().__init__(f"XML artifact not found: {path}")
        self.path = path


class InvalidIntervalError(ValueError, MonitorError):
    """Requested poll interval is outside the accepted range."""
    pass
