from __future__ import annotations

import json
import threading
import time
import unittest
from unittest.mock import MagicMock

from services.redis_store import RedisStore
from services.store import PROGRESS, REWARDS, InMemoryStore


def test_get_returns_copies() -> None:
    store = InMemoryStore(ttl_sec=1000)
    store.set("v-1", PROGRESS, {"visited_spots": ["a"]})
    record = store.get("v-1", PROGRESS)
    record["visited_spots"].append("b")
    assert store.get("v-1", PROGRESS) == {"visited_spots": ["a"]}
    assert store.get("v-1", REWARDS) is None


def test_reset_clears_state() -> None:
    store = InMemoryStore(ttl_sec=1000)
    store.set("v-2", PROGRESS, {"points": 100})
    store.set("v-2", REWARDS, [])
    store.reset("v-2")
    assert store.get("v-2", PROGRESS) is None
    assert store.get("v-2", REWARDS) is None


def test_cleanup_by_ttl() -> None:
    store = InMemoryStore(ttl_sec=1)
    store.set("v-ttl", PROGRESS, {"points": 1})
    assert ("v-ttl", PROGRESS) in store._records  # type: ignore[attr-defined]

    # force timestamp to be stale
    store._last_access["v-ttl"] = time.time() - 10  # type: ignore[attr-defined]
    assert store.get("v-ttl", PROGRESS) is None
    assert ("v-ttl", PROGRESS) not in store._records  # type: ignore[attr-defined]


def test_lock_serializes_read_modify_write() -> None:
    store = InMemoryStore(ttl_sec=1000)
    store.set("v-3", PROGRESS, {"points": 0})

    def bump() -> None:
        for _ in range(50):
            with store.lock("v-3"):
                record = store.get("v-3", PROGRESS)
                time.sleep(0)
                record["points"] += 1
                store.set("v-3", PROGRESS, record)

    workers = [threading.Thread(target=bump) for _ in range(4)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()
    assert store.get("v-3", PROGRESS)["points"] == 200


def test_lock_is_reentrant() -> None:
    store = InMemoryStore(ttl_sec=1000)
    with store.lock("v-4"):
        with store.lock("v-4"):
            store.set("v-4", PROGRESS, {"ok": True})
    assert store.get("v-4", PROGRESS) == {"ok": True}


def test_idle_expiry_keeps_rewards() -> None:
    store = InMemoryStore(ttl_sec=1)
    store.set("v-keep", PROGRESS, {"points": 100})
    store.set("v-keep", REWARDS, [{"id": "coupon_1"}])

    store._last_access["v-keep"] = time.time() - 10  # type: ignore[attr-defined]
    assert store.get("v-other", PROGRESS) is None
    assert ("v-keep", PROGRESS) not in store._records  # type: ignore[attr-defined]
    assert store.get("v-keep", REWARDS) == [{"id": "coupon_1"}]


def test_many_visitors_from_many_threads() -> None:
    store = InMemoryStore(ttl_sec=1000)
    errors: list[Exception] = []

    def run(worker: int) -> None:
        try:
            for i in range(500):
                vid = f"v-{worker}-{i}"
                with store.lock(vid):
                    store.set(vid, PROGRESS, {"points": i})
                    store.get(vid, PROGRESS)
        except Exception as exc:
            errors.append(exc)

    workers = [threading.Thread(target=run, args=(n,)) for n in range(4)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()
    assert errors == []
    assert store.get("v-3-499", PROGRESS) == {"points": 499}


def test_reset_prunes_idle_lock_but_not_held_one() -> None:
    store = InMemoryStore(ttl_sec=1000)
    with store.lock("v-5"):
        store.set("v-5", PROGRESS, {"points": 1})
        store.reset("v-5")
        assert "v-5" in store._locks  # type: ignore[attr-defined]
    assert "v-5" not in store._locks  # type: ignore[attr-defined]

    with store.lock("v-6"):
        store.set("v-6", PROGRESS, {"points": 1})
    assert "v-6" in store._locks  # type: ignore[attr-defined]
    store.reset("v-6")
    assert "v-6" not in store._locks  # type: ignore[attr-defined]


class TestRedisStore(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.store = RedisStore(self.client, ttl_sec=3600)

    def test_set_writes_json_with_ttl(self):
        self.store.set("v", PROGRESS, {"points": 100, "visited_spots": ["a"]})
        args, kwargs = self.client.set.call_args
        self.assertEqual(args[0], "visitor:v:progress")
        self.assertEqual(json.loads(args[1]), {"points": 100, "visited_spots": ["a"]})
        self.assertEqual(kwargs["ex"], 3600)

    def test_rewards_are_written_without_ttl(self):
        self.store.set("v", REWARDS, [{"id": "coupon_1"}])
        args, kwargs = self.client.set.call_args
        self.assertEqual(args[0], "visitor:v:rewards")
        self.assertNotIn("ex", kwargs)

    def test_get_decodes_and_tolerates_corruption(self):
        self.client.get.return_value = '[{"id": "coupon_1"}]'
        self.assertEqual(self.store.get("v", REWARDS), [{"id": "coupon_1"}])
        self.client.get.assert_called_with("visitor:v:rewards")

        self.client.get.return_value = "{not json"
        self.assertIsNone(self.store.get("v", REWARDS))

        self.client.get.return_value = None
        self.assertIsNone(self.store.get("v", REWARDS))

    def test_lock_uses_per_visitor_key(self):
        with self.store.lock("v"):
            pass
        args, kwargs = self.client.lock.call_args
        self.assertEqual(args[0], "lock:visitor:v")
        self.assertEqual(kwargs["timeout"], 10.0)
        self.client.lock.return_value.__enter__.assert_called_once()

    def test_reset_deletes_both_kinds(self):
        self.store.reset("v")
        self.client.delete.assert_called_once_with("visitor:v:progress", "visitor:v:rewards")


if __name__ == "__main__":
    unittest.main()
