"""
Redis-backed visitor store.

Key schema:

  visitor:{visitor_id}:{kind}
      Type : String (JSON)
      TTL  : Configuration.store_ttl_sec, reset on each write. The
             rewards kind is written without a TTL and never expires.

  lock:visitor:{visitor_id}
      redis-py Lock used to serialize read-modify-write cycles.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import redis
from loguru import logger

from services.store import PROGRESS, REWARDS, VisitorStore


class RedisStore(VisitorStore):
    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_sec: int,
        lock_timeout: float = 10.0,
        blocking_timeout: float = 5.0,
    ) -> None:
        self.client = client
        self.ttl_sec = ttl_sec
        self.lock_timeout = lock_timeout
        self.blocking_timeout = blocking_timeout

    @classmethod
    def from_url(cls, url: str, *, ttl_sec: int) -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_sec=ttl_sec)

    @staticmethod
    def _key(visitor_id: str, kind: str) -> str:
        return f"visitor:{visitor_id}:{kind}"

    def get(self, visitor_id: str, kind: str) -> Optional[Any]:
        if not visitor_id:
            return None
        raw = self.client.get(self._key(visitor_id, kind))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("discarding corrupt record visitor={} kind={}", visitor_id, kind)
            return None

    def set(self, visitor_id: str, kind: str, value: Any) -> None:
        if not visitor_id:
            return
        payload = json.dumps(value, ensure_ascii=False, default=str)
        if kind == REWARDS:
            self.client.set(self._key(visitor_id, kind), payload)
        else:
            self.client.set(self._key(visitor_id, kind), payload, ex=self.ttl_sec)

    @contextmanager
    def lock(self, visitor_id: str) -> Iterator[None]:
        lk = self.client.lock(
            f"lock:visitor:{visitor_id}",
            timeout=self.lock_timeout,
            blocking_timeout=self.blocking_timeout,
        )
        with lk:
            yield

    def reset(self, visitor_id: str) -> None:
        if not visitor_id:
            return
        self.client.delete(self._key(visitor_id, PROGRESS), self._key(visitor_id, REWARDS))
