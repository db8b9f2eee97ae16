import threading
import time
import unittest

from aeye.llm.cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache(unittest.TestCase):
    def test_fresh_value_is_reused_and_stale_value_reloaded(self) -> None:
        clock = _Clock()
        cache = TTLCache(3600, clock=clock)
        calls = []

        def load():
            calls.append(clock.now)
            return {"slug": "m", "n": len(calls)}

        self.assertEqual(cache.get_or_load("m", load)["n"], 1)
        clock.now = 3599
        self.assertEqual(cache.get_or_load("m", load)["n"], 1)
        clock.now = 3600
        self.assertEqual(cache.get_or_load("m", load)["n"], 2)
        self.assertEqual(len(calls), 2)

    def test_keys_are_independent(self) -> None:
        cache = TTLCache(10)
        self.assertEqual(cache.get_or_load("a", lambda: 1), 1)
        self.assertEqual(cache.get_or_load("b", lambda: 2), 2)
        self.assertEqual(cache.get_or_load("a", lambda: 3), 1)

    def test_failed_load_is_not_cached(self) -> None:
        cache = TTLCache(10)

        def boom():
            raise RuntimeError("down")

        with self.assertRaises(RuntimeError):
            cache.get_or_load("m", boom)
        self.assertEqual(cache.get_or_load("m", lambda: "ok"), "ok")

    def test_concurrent_first_requests_share_one_load(self) -> None:
        cache = TTLCache(10)
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_load():
            calls.append(1)
            started.set()
            release.wait(5)
            return "info"

        results = []

        def worker():
            results.append(cache.get_or_load("m", slow_load))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        threads[0].start()
        self.assertTrue(started.wait(5))
        for t in threads[1:]:
            t.start()
        time.sleep(0.05)
        release.set()
        for t in threads:
            t.join(5)

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, ["info"] * 5)

    def test_invalidate(self) -> None:
        cache = TTLCache(10)
        cache.get_or_load("m", lambda: 1)
        cache.invalidate("m")
        self.assertEqual(cache.get_or_load("m", lambda: 2), 2)

    def test_ttl_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            TTLCache(0)


if __name__ == "__main__":
    unittest.main()
