import unittest

from zhinao_geo.services.cache import TTLCache, cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache(unittest.TestCase):
    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(ttl_s=10, clock=clock)
        cache.set("k", 1)
        clock.now += 9
        self.assertEqual(cache.get("k"), 1)
        clock.now += 1
        self.assertIsNone(cache.get("k"))

    def test_get_or_set_loads_once(self):
        cache = TTLCache()
        loads = []

        def load():
            loads.append(1)
            return ["row"]

        self.assertEqual(cache.get_or_set("k", load), ["row"])
        self.assertEqual(cache.get_or_set("k", load), ["row"])
        self.assertEqual(len(loads), 1)

    def test_prefix_invalidation(self):
        cache = TTLCache()
        cache.set(cache_key("scan-jobs", "u1", 20), [1])
        cache.set(cache_key("scan-jobs", "u2", 20), [2])
        cache.set(cache_key("scan-jobs-archive", "u1"), [3])
        cache.set(cache_key("credit-transactions", "u1", 20), [4])

        self.assertEqual(cache.invalidate("scan-jobs"), 2)
        self.assertIsNone(cache.get("scan-jobs:u1:20"))
        self.assertEqual(cache.get("scan-jobs-archive:u1"), [3])
        self.assertEqual(cache.get("credit-transactions:u1:20"), [4])

    def test_oldest_dropped_when_full(self):
        clock = FakeClock()
        cache = TTLCache(max_items=2, ttl_s=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        self.assertIsNone(cache.get("a"))
        self.assertEqual(cache.get("b"), 2)
        self.assertEqual(cache.get("c"), 3)

    def test_expired_entries_make_room_first(self):
        clock = FakeClock()
        cache = TTLCache(max_items=2, ttl_s=60, clock=clock)
        cache.set("a", 1)
        clock.now += 30
        cache.set("b", 2)
        clock.now += 31
        cache.set("c", 3)
        self.assertEqual(cache.get("b"), 2)
        self.assertEqual(cache.get("c"), 3)


if __name__ == "__main__":
    unittest.main()
