from __future__ import annotations

from conftest import FakeClock

from manga_studio.ratelimit import SlidingWindowRateLimiter, client_ip, ratelimit_headers


def test_hits_until_the_limit(clock: FakeClock) -> None:
    limiter = SlidingWindowRateLimiter(clock=clock)
    decisions = [limiter.hit("ocr:u1", 3, 60) for _ in range(4)]
    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    assert decisions[-1].reset_at == clock.now + 60


def test_window_slides_and_evicts(clock: FakeClock) -> None:
    limiter = SlidingWindowRateLimiter(clock=clock)
    limiter.hit("k", 2, 60)
    clock.advance(30)
    limiter.hit("k", 2, 60)
    assert not limiter.check("k", 2, 60).allowed

    clock.advance(31)
    decision = limiter.check("k", 2, 60)
    assert decision.allowed and decision.remaining == 1
    assert decision.reset_at == clock.now - 31 + 60

    clock.advance(60)
    assert limiter.check("k", 2, 60).remaining == 2
    assert len(limiter) == 0


def test_check_does_not_consume(clock: FakeClock) -> None:
    limiter = SlidingWindowRateLimiter(clock=clock)
    for _ in range(5):
        assert limiter.check("k", 1, 60).allowed
    assert limiter.record("k", 1, 60).allowed
    assert not limiter.record("k", 1, 60).allowed


def test_keys_are_independent(clock: FakeClock) -> None:
    limiter = SlidingWindowRateLimiter(clock=clock)
    assert limiter.hit("ocr:u1", 1, 60).allowed
    assert limiter.hit("ocr:u2", 1, 60).allowed
    assert not limiter.hit("ocr:u1", 1, 60).allowed


def test_headers_use_epoch_seconds() -> None:
    assert ratelimit_headers(4, 1700000000.2) == {
        "X-RateLimit-Remaining": "4",
        "X-RateLimit-Reset": "1700000001",
    }


def test_client_ip_priority() -> None:
    assert client_ip({"x-forwarded-for": "1.1.1.1, 10.0.0.1", "x-real-ip": "2.2.2.2"}) == "1.1.1.1"
    assert client_ip({"cf-connecting-ip": "3.3.3.3", "x-real-ip": "2.2.2.2"}) == "3.3.3.3"
    assert client_ip({"x-client-ip": "4.4.4.4"}) == "4.4.4.4"
    assert client_ip({}) == "unknown"


def test_prune_sweeps_every_expired_key(clock: FakeClock) -> None:
    limiter = SlidingWindowRateLimiter(clock=clock)
    for n in range(1000):
        limiter.hit(f"ip:10.0.{n // 256}.{n % 256}", 60, 60)
    limiter.hit("ip:busy", 60, 3600)
    assert len(limiter) == 1001

    clock.advance(61)
    assert limiter.prune() == 1000
    assert len(limiter) == 1
    assert limiter.check("ip:busy", 60, 3600).remaining == 59


def test_hits_sweep_stale_keys_as_time_passes(clock: FakeClock) -> None:
    limiter = SlidingWindowRateLimiter(clock=clock)
    for n in range(1000):
        limiter.hit(f"ip:{n}", 60, 60)
    clock.advance(3600)
    limiter.hit("ip:new", 60, 60)
    assert len(limiter) == 1
