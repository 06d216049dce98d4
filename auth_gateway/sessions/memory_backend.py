"""Server-side session storage.

Only an opaque, signed id travels in the cookie; the session dict lives here.
"""

from __future__ import annotations

import copy
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any, Protocol

from auth_gateway.logger import get_logger

logger = get_logger(__name__)

type SessionData = dict[str, Any]


class SessionBackend(Protocol):
    def get(self, session_id: str) -> SessionData | None: ...

    def set(self, session_id: str, data: SessionData, *, ttl_seconds: int) -> None: ...

    def delete(self, session_id: str) -> None: ...


@dataclass(slots=True)
class _StoredSession:
    data: SessionData
    ttl_seconds: int
    deadline: float


class MemorySessionBackend(SessionBackend):
    """Process-local store with idle timeout and a least-recently-used bound.

    Reads extend the idle deadline. Callers always receive deep copies, so a
    request never mutates another request's view of the session. Nothing
    survives a restart.
    """

    def __init__(self, *, max_entries: int, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._max_entries = max_entries
        self._clock = clock
        self._lock = Lock()
        self._sessions: OrderedDict[str, _StoredSession] = OrderedDict()

    def get(self, session_id: str) -> SessionData | None:
        with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                return None
            now = self._clock()
            if now >= stored.deadline:
                del self._sessions[session_id]
                return None
            stored.deadline = now + stored.ttl_seconds
            self._sessions.move_to_end(session_id)
            return copy.deepcopy(stored.data)

    def set(self, session_id: str, data: SessionData, *, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self.delete(session_id)
            return
        with self._lock:
            now = self._clock()
            self._sessions[session_id] = _StoredSession(
                data=copy.deepcopy(data), ttl_seconds=ttl_seconds, deadline=now + ttl_seconds
            )
            self._sessions.move_to_end(session_id)
            self._prune_locked(now)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _prune_locked(self, now: float) -> None:
        expired = [sid for sid, stored in self._sessions.items() if now >= stored.deadline]
        for sid in expired:
            del self._sessions[sid]

        overflow = max(0, len(self._sessions) - self._max_entries)
        for _ in range(overflow):
            self._sessions.popitem(last=False)

        if expired or overflow:
            logger.debug("sessions_pruned", expired=len(expired), evicted=overflow)
