from __future__ import annotations

import copy
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple


PROGRESS = "progress"
REWARDS = "rewards"


class VisitorStore:
    """Keyed-record store addressed by (visitor_id, record kind).

    Every read-modify-write on a visitor's records must run inside
    `lock(visitor_id)` so concurrent check-ins and redemptions serialize.
    """

    def get(self, visitor_id: str, kind: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, visitor_id: str, kind: str, value: Any) -> None:
        raise NotImplementedError

    def lock(self, visitor_id: str):
        raise NotImplementedError

    def reset(self, visitor_id: str) -> None:
        raise NotImplementedError


class InMemoryStore(VisitorStore):
    """Simple in-memory store with idle expiry per visitor.

    Idle visitors lose their progress after ``ttl_sec``; issued rewards are
    kept for the life of the process.
    """

    def __init__(self, ttl_sec: int = 60 * 60 * 24 * 365) -> None:
        self._records: Dict[Tuple[str, str], Any] = {}
        self._last_access: Dict[str, float] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._holders: Dict[str, int] = {}
        self._guard = threading.Lock()
        self.ttl_sec = ttl_sec

    def get(self, visitor_id: str, kind: str) -> Optional[Any]:
        if not visitor_id:
            return None
        with self._guard:
            self._cleanup()
            self._last_access[visitor_id] = time.time()
            return copy.deepcopy(self._records.get((visitor_id, kind)))

    def set(self, visitor_id: str, kind: str, value: Any) -> None:
        if not visitor_id:
            return
        value = copy.deepcopy(value)
        with self._guard:
            self._cleanup()
            self._records[(visitor_id, kind)] = value
            self._last_access[visitor_id] = time.time()

    @contextmanager
    def lock(self, visitor_id: str) -> Iterator[None]:
        with self._guard:
            lk = self._locks.setdefault(visitor_id, threading.RLock())
            self._holders[visitor_id] = self._holders.get(visitor_id, 0) + 1
        try:
            with lk:
                yield
        finally:
            with self._guard:
                self._holders[visitor_id] -= 1
                if not self._holders[visitor_id]:
                    del self._holders[visitor_id]
                    if visitor_id not in self._last_access:
                        self._locks.pop(visitor_id, None)

    def reset(self, visitor_id: str) -> None:
        """Drop every record held for a visitor, rewards included."""
        if not visitor_id:
            return
        with self._guard:
            self._drop(visitor_id)

    def _drop(self, visitor_id: str, keep: Tuple[str, ...] = ()) -> None:
        for key in [k for k in self._records if k[0] == visitor_id and k[1] not in keep]:
            del self._records[key]
        self._last_access.pop(visitor_id, None)
        # a lock still held or awaited stays until its last holder leaves
        if not self._holders.get(visitor_id):
            self._locks.pop(visitor_id, None)

    def _cleanup(self) -> None:
        """Expire idle visitors' progress. Caller holds ``_guard``."""
        now = time.time()
        expired = [
            vid for vid, last in self._last_access.items()
            if now - last > self.ttl_sec
        ]
        for vid in expired:
            self._drop(vid, keep=(REWARDS,))
