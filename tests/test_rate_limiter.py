from unittest import mock

from intake.services.rate_limiter import MemoryRateLimitStore, RateLimiter, RedisRateLimitStore


class FakeClock:
    def __init__(self, t: float = 1_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_sixth_call_in_window_is_denied():
    clock = FakeClock()
    rl = RateLimiter(MemoryRateLimitStore(), window=60, limit=5, clock=clock)
    results = [rl.allow("fp-a") for _ in range(6)]
    assert results == [True, True, True, True, True, False]


def test_window_resets_after_expiry():
    clock = FakeClock()
    store = MemoryRateLimitStore()
    rl = RateLimiter(store, window=60, limit=5, clock=clock)
    for _ in range(5):
        assert rl.allow("fp-a")
    assert not rl.allow("fp-a")

    clock.t += 60  # exactly one window later counts as a new window
    assert rl.allow("fp-a")
    snap = store.snapshot("fp-a")
    assert snap.count == 1
    assert snap.window_start == clock.t


def test_denied_calls_do_not_extend_the_window():
    clock = FakeClock()
    store = MemoryRateLimitStore()
    rl = RateLimiter(store, window=60, limit=1, clock=clock)
    assert rl.allow("fp-a")
    clock.t += 30
    assert not rl.allow("fp-a")
    assert store.snapshot("fp-a").window_start == 1_000.0
    assert store.snapshot("fp-a").count == 1


def test_fingerprints_are_independent():
    rl = RateLimiter(MemoryRateLimitStore(), window=60, limit=1, clock=FakeClock())
    assert rl.allow("fp-a")
    assert rl.allow("fp-b")
    assert not rl.allow("fp-a")


def test_stale_windows_are_swept():
    clock = FakeClock()
    store = MemoryRateLimitStore()
    store.SWEEP_EVERY = 3
    rl = RateLimiter(store, window=60, limit=5, clock=clock)
    rl.allow("old-1")
    rl.allow("old-2")
    clock.t += 120
    rl.allow("fresh")  # third call triggers the sweep
    assert store.snapshot("old-1") is None
    assert store.snapshot("old-2") is None
    assert len(store) == 1


def test_redis_store_runs_script_with_window_in_ms():
    client = mock.Mock()
    script = mock.Mock(side_effect=[1, 0])
    client.register_script.return_value = script
    store = RedisRateLimitStore(client, prefix="t:")

    assert store.hit("fp-a", window=60, limit=5, now=0) is True
    assert store.hit("fp-a", window=60, limit=5, now=0) is False
    script.assert_called_with(keys=["t:fp-a"], args=[60000, 5])
