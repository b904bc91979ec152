"""State store interface and the in-memory implementation."""

from __future__ import annotations

import copy
from typing import Any, Protocol

from pyvsm.exceptions import DeviceNotFoundError


class StateStore(Protocol):
    """Persistence boundary for device state records.

    Implementations backed by files or remote services live outside this
    package; the service only needs these calls.
    """

    async def fetch(self, device_id: str) -> dict[str, Any]:
        """Return the stored record or raise :class:`DeviceNotFoundError`."""
        ...

    async def put(self, device_id: str, state: dict[str, Any], diff: dict[str, Any]) -> None:
        """Store *state*; *diff* is the translator result that produced it."""
        ...

    async def put_error(self, device_id: str, error: BaseException) -> None:
        """Record a translation failure for *device_id*."""
        ...


class MemoryStateStore:
    """In-memory store keeping deep copies, so callers cannot alias stored records."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._diffs: dict[str, dict[str, Any]] = {}
        self._errors: dict[str, list[str]] = {}

    async def fetch(self, device_id: str) -> dict[str, Any]:
        record = self._records.get(device_id)
        if record is None:
            raise DeviceNotFoundError(device_id)
        return copy.deepcopy(record)

    async def put(self, device_id: str, state: dict[str, Any], diff: dict[str, Any]) -> None:
        self._records[device_id] = copy.deepcopy(state)
        self._diffs[device_id] = copy.deepcopy(diff)

    async def put_error(self, device_id: str, error: BaseException) -> None:
        self._errors.setdefault(device_id, []).append(f"{type(error).__name__}: {error}")

    def last_diff(self, device_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._diffs.get(device_id, {}))

    def errors(self, device_id: str) -> list[str]:
        return list(self._errors.get(device_id, []))

    def device_ids(self) -> list[str]:
        return sorted(self._records)
