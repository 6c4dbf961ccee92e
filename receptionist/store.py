"""Per-call state persistence.

The store keeps the encoded CallState blob plus the responses already sent
for recent turns, so a redelivered webhook can be answered without running
the turn again. ``lock(call_sid)`` gives the per-call mutual exclusion the
controller holds around decode, route and encode.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from receptionist.models.turn import TurnResponse

log = logging.getLogger("receptionist.store")

# Responses kept per call for duplicate-delivery replay.
RESPONSE_HISTORY = 5


@dataclass
class StoredCall:
    blob: str
    responses: dict[int, TurnResponse] = field(default_factory=dict)
    updated_at: float = field(default_factory=time.monotonic)

    def response_for(self, turn_index: int) -> Optional[TurnResponse]:
        """Stored response for ``turn_index``, else the latest one."""
        if turn_index in self.responses:
            return self.responses[turn_index]
        if self.responses:
            return self.responses[max(self.responses)]
        return None

    def remember(self, turn_index: int, response: TurnResponse) -> None:
        self.responses[turn_index] = response
        for old in sorted(self.responses)[:-RESPONSE_HISTORY]:
            del self.responses[old]


class CallStateStore(ABC):
    """Key-value persistence addressed by call SID. ``put`` is a full replace."""

    @abstractmethod
    async def get(self, call_sid: str) -> Optional[StoredCall]: ...

    @abstractmethod
    async def put(self, call_sid: str, record: StoredCall) -> None: ...

    @abstractmethod
    async def delete(self, call_sid: str) -> None: ...

    @abstractmethod
    def lock(self, call_sid: str) -> asyncio.Lock: ...


class InMemoryCallStateStore(CallStateStore):
    """Process-local store with an inactivity TTL."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._ttl = ttl_seconds
        self._records: dict[str, StoredCall] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _purge(self) -> None:
        cutoff = time.monotonic() - self._ttl
        expired = [sid for sid, rec in self._records.items() if rec.updated_at < cutoff]
        for sid in expired:
            self._records.pop(sid, None)
            lock = self._locks.get(sid)
            if lock is not None and not lock.locked():
                self._locks.pop(sid, None)
            log.info("Call state expired: %s", sid)
        # Locks left behind by calls deleted while the lock was held
        idle = [sid for sid, lock in self._locks.items() if sid not in self._records and not lock.locked()]
        for sid in idle:
            del self._locks[sid]

    async def get(self, call_sid: str) -> Optional[StoredCall]:
        self._purge()
        return self._records.get(call_sid)

    async def put(self, call_sid: str, record: StoredCall) -> None:
        record.updated_at = time.monotonic()
        self._records[call_sid] = record

    async def delete(self, call_sid: str) -> None:
        self._records.pop(call_sid, None)
        lock = self._locks.get(call_sid)
        if lock is not None and not lock.locked():
            self._locks.pop(call_sid, None)

    def lock(self, call_sid: str) -> asyncio.Lock:
        lock = self._locks.get(call_sid)
        if lock is None:
            lock = self._locks[call_sid] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._records)
