"""Consume-once handoff of background job results to polling clients."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class CompletionStore(Protocol):
    """Key-value store holding at most one unclaimed record per board id."""

    async def put(self, board_id: str, record: Mapping[str, Any]) -> None: ...

    async def take(self, board_id: str) -> dict[str, Any]: ...


@dataclass
class _Entry:
    record: dict[str, Any]
    expires_at: float


class CompletionNotificationBroker:
    """Process-local `CompletionStore` with time-boxed records.

    ``put`` overwrites any unclaimed record for the same board id. ``take``
    pops the record and reports ``completed``; absent, consumed, and expired
    records all report ``processing``. Expiry is evaluated lazily against the
    injected clock, and stale entries are swept on every ``put``.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def put(self, board_id: str, record: Mapping[str, Any]) -> None:
        async with self._lock:
            now = self._clock()
            self._purge_expired(now)
            replaced = board_id in self._entries
            self._entries[board_id] = _Entry(dict(record), now + self._ttl)
        logger.info(
            "Cached completion record for board %s%s",
            board_id,
            " (replaced unclaimed record)" if replaced else "",
        )

    async def take(self, board_id: str) -> dict[str, Any]:
        async with self._lock:
            entry = self._entries.pop(board_id, None)
            if entry is not None and entry.expires_at <= self._clock():
                logger.info("Completion record for board %s expired unclaimed", board_id)
                entry = None
        if entry is None:
            return {"status": "processing"}
        logger.info("Delivered completion record for board %s", board_id)
        return {"status": "completed", **entry.record}

    def __len__(self) -> int:
        return len(self._entries)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Expired %d unclaimed completion record(s)", len(expired))


__all__ = ["CompletionNotificationBroker", "CompletionStore", "DEFAULT_TTL_SECONDS"]
