import threading

from ipo_allotment.rate_limiter import RateLimiter, client_identifier


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_eleventh_request_in_window_is_denied():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=10, window_seconds=60, clock=clock)

    for expected_remaining in range(9, -1, -1):
        decision = limiter.check("10.0.0.1")
        assert decision.allowed
        assert decision.remaining == expected_remaining
        clock.now += 1

    denied = limiter.check("10.0.0.1")
    assert not denied.allowed
    assert denied.remaining == 0
    # Oldest request at t=1000, now t=1010: it leaves the window in 50s.
    assert denied.reset_in == 50


def test_request_allowed_again_after_window_passes_first_timestamp():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=10, window_seconds=60, clock=clock)
    for _ in range(10):
        limiter.check("client")
    assert not limiter.check("client").allowed

    clock.now += 60
    decision = limiter.check("client")
    assert decision.allowed
    assert decision.remaining == 9


def test_denied_requests_do_not_consume_capacity():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.check("a")
    limiter.check("a")
    for _ in range(5):
        assert not limiter.check("a").allowed
    clock.now += 60
    assert limiter.check("a").remaining == 1


def test_identifiers_are_independent():
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    assert limiter.check("a").allowed
    assert not limiter.check("a").allowed
    assert limiter.check("b").allowed


def test_reset_in_is_positive_even_at_window_edge():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    limiter.check("a")
    clock.now += 59.9
    decision = limiter.check("a")
    assert not decision.allowed
    assert decision.reset_in >= 1


def test_sweep_removes_only_idle_clients():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=clock)
    limiter.check("old")
    clock.now += 30
    limiter.check("recent")
    clock.now += 31

    assert limiter.sweep() == 1
    assert limiter.tracked_clients() == 1

    clock.now += 60
    assert limiter.sweep() == 1
    assert limiter.tracked_clients() == 0


def test_check_after_sweep_starts_fresh_window():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    limiter.check("a")
    clock.now += 61
    limiter.sweep()
    assert limiter.check("a").allowed
    assert limiter.tracked_clients() == 1


def test_concurrent_checks_never_exceed_ceiling():
    limiter = RateLimiter(max_requests=10, window_seconds=60)
    allowed = []
    barrier = threading.Barrier(20)

    def worker():
        barrier.wait()
        for _ in range(5):
            allowed.append(limiter.check("shared").allowed)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert allowed.count(True) == 10
    assert len(allowed) == 100


def test_background_sweep_can_start_and_stop():
    limiter = RateLimiter(sweep_interval_seconds=0.01)
    limiter.start()
    limiter.stop()
    assert limiter._thread is None


def test_client_identifier_prefers_forwarded_for():
    headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.2", "x-real-ip": "198.51.100.1"}
    assert client_identifier(headers) == "203.0.113.7"


def test_client_identifier_falls_back_to_real_ip_then_unknown():
    assert client_identifier({"x-real-ip": "198.51.100.1"}) == "198.51.100.1"
    assert client_identifier({}) == "unknown"
    assert client_identifier({}, "192.0.2.5") == "192.0.2.5"
