import threading

from logbook.services.rate_limit import RateLimiter, RateLimitResult, get_rate_limit_key

from conftest import FakeClock


def test_sixth_request_in_window_is_refused():
    clock = FakeClock(start=1_000.0)
    limiter = RateLimiter(clock=clock)

    results = [limiter.check('1.2.3.4', 5, 60_000) for _ in range(6)]

    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
    assert results[5].remaining == 0
    assert results[5].reset_time == 1_000_000 + 60_000


def test_window_resets_after_expiry():
    clock = FakeClock(start=1_000.0)
    limiter = RateLimiter(clock=clock)
    for _ in range(6):
        limiter.check('k', 5, 60_000)

    clock.advance(61)
    result = limiter.check('k', 5, 60_000)
    assert result.allowed is True
    assert result.remaining == 4


def test_keys_are_independent():
    limiter = RateLimiter(clock=FakeClock(start=0.0))
    for _ in range(3):
        limiter.check('a', 2, 1_000)
    assert limiter.check('b', 2, 1_000).allowed is True


def test_retry_after_rounds_up_and_never_negative():
    result = RateLimitResult(allowed=False, remaining=0, reset_time=10_500)
    assert result.retry_after(10_000) == 1
    assert result.retry_after(8_999) == 2
    assert result.retry_after(20_000) == 0


def test_expired_windows_are_swept():
    clock = FakeClock(start=0.0)
    limiter = RateLimiter(clock=clock, sweep_interval_ms=1_000)
    limiter.check('old', 5, 500)
    assert len(limiter) == 1

    clock.advance(2)
    limiter.check('new', 5, 500)
    assert len(limiter) == 1


def test_reset():
    limiter = RateLimiter(clock=FakeClock(start=0.0))
    limiter.check('a', 1, 1_000)
    limiter.check('b', 1, 1_000)
    limiter.reset('a')
    assert len(limiter) == 1
    limiter.reset()
    assert len(limiter) == 0


def test_concurrent_increments_are_not_lost():
    limiter = RateLimiter(clock=FakeClock(start=0.0))
    allowed = []

    def hammer():
        for _ in range(50):
            allowed.append(limiter.check('shared', 100, 60_000).allowed)

    threads = [threading.Thread(target=hammer) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert allowed.count(True) == 100
    assert allowed.count(False) == 100


def test_rate_limit_key_prefers_first_forwarded_hop():
    assert get_rate_limit_key(' 203.0.113.7 , 10.0.0.1', '127.0.0.1') == '203.0.113.7'
    assert get_rate_limit_key(None, '127.0.0.1') == '127.0.0.1'


def test_rate_limit_key_fallbacks():
    hashed = get_rate_limit_key(None, None, 'Mozilla/5.0')
    assert hashed.startswith('ua:')
    assert hashed == get_rate_limit_key('', None, 'Mozilla/5.0')
    assert get_rate_limit_key(None, None, None) == 'unknown'
