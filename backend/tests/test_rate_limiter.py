import threading

import pytest

from conftest import FakeClock
from portal_access.config import Settings
from portal_access.logbuffer import SystemLogBuffer
from portal_access.ratelimit import (
    LOGIN_POLICY,
    RateLimitConfig,
    RateLimiter,
    RateLimitPolicy,
    build_policies,
    make_key,
    validate_key,
)

KEY = "login:1.2.3.4"


def policy(max_requests: int = 5, window_ms: int = 60_000, steps=(), reset_on_success=False):
    return RateLimitPolicy(
        name="test",
        config=RateLimitConfig(max_requests, window_ms, tuple(steps)),
        reset_on_success=reset_on_success,
    )


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


class TestFixedWindow:
    def test_five_failures_block_the_sixth_check(self, limiter: RateLimiter) -> None:
        login = policy(max_requests=5, window_ms=60_000)
        for _ in range(5):
            limiter.record(KEY, login, success=False)

        decision = limiter.check(KEY, login)

        assert decision.allowed is False
        assert decision.reset_in_ms > 0
        assert decision.retry_after_s == 60

    def test_remaining_counts_down_per_check(self, limiter: RateLimiter) -> None:
        generic = policy(max_requests=3)
        remaining = [limiter.check("search:10.0.0.1", generic).remaining for _ in range(3)]

        assert remaining == [3, 2, 1]
        assert limiter.check("search:10.0.0.1", generic).allowed is False

    def test_checks_alone_cannot_probe_past_the_limit(self, limiter: RateLimiter) -> None:
        generic = policy(max_requests=3)
        allowed = [limiter.check(KEY, generic).allowed for _ in range(10)]

        assert allowed == [True, True, True] + [False] * 7

    def test_failed_record_confirms_pending_check(self, limiter: RateLimiter) -> None:
        login = policy(max_requests=3, reset_on_success=True)
        outcomes = []
        for _ in range(3):
            assert limiter.check(KEY, login).allowed
            outcomes.append(limiter.record(KEY, login, success=False))

        assert [o.remaining for o in outcomes[:2]] == [2, 1]
        assert outcomes[2].allowed is False
        assert limiter.check(KEY, login).allowed is False

    def test_window_expiry_resets_counter(self, limiter: RateLimiter, clock: FakeClock) -> None:
        generic = policy(max_requests=2, window_ms=1_000)
        limiter.check(KEY, generic)
        limiter.check(KEY, generic)
        assert limiter.check(KEY, generic).allowed is False

        clock.advance(1_001)
        decision = limiter.check(KEY, generic)

        assert decision.allowed is True
        assert decision.remaining == 2

    def test_count_is_clamped(self, limiter: RateLimiter, clock: FakeClock) -> None:
        generic = policy(max_requests=2)
        for _ in range(20):
            limiter.check(KEY, generic)
            limiter.record(KEY, generic, success=False)

        entry = limiter.store.get(KEY)
        assert entry is not None
        assert entry.count <= 3


class TestSuccessReset:
    @pytest.mark.parametrize("failures", [0, 1, 2, 4])
    def test_success_restores_full_allowance(self, limiter: RateLimiter, failures: int) -> None:
        login = policy(max_requests=5, reset_on_success=True)
        for _ in range(failures):
            limiter.check(KEY, login)
            limiter.record(KEY, login, success=False)

        limiter.check(KEY, login)
        limiter.record(KEY, login, success=True)
        decision = limiter.check(KEY, login)

        assert decision.allowed is True
        assert decision.remaining == 5

    def test_success_does_not_lift_block(self, limiter: RateLimiter, clock: FakeClock) -> None:
        login = policy(max_requests=2, steps=(10_000,), reset_on_success=True)
        limiter.record(KEY, login, success=False)
        limiter.record(KEY, login, success=False)

        outcome = limiter.record(KEY, login, success=True)

        assert outcome.allowed is False
        assert limiter.check(KEY, login).allowed is False

    def test_success_without_reset_keeps_count(self, limiter: RateLimiter) -> None:
        generic = policy(max_requests=2)
        limiter.check(KEY, generic)
        limiter.record(KEY, generic, success=True)
        limiter.check(KEY, generic)

        assert limiter.check(KEY, generic).allowed is False


class TestLockouts:
    def test_block_is_monotonic_until_expiry(self, limiter: RateLimiter, clock: FakeClock) -> None:
        login = policy(max_requests=3, steps=(5_000,), reset_on_success=True)
        for _ in range(3):
            limiter.record(KEY, login, success=False)
        first = limiter.check(KEY, login)
        blocked_until = limiter.store.get(KEY).blocked_until

        for step in range(40):
            clock.advance(100)
            if step % 3 == 0:
                decision = limiter.check(KEY, login)
            else:
                decision = limiter.record(KEY, login, success=step % 3 == 1)
            assert decision.allowed is False
            assert limiter.store.get(KEY).blocked_until == blocked_until

        assert first.allowed is False
        clock.advance(1_000)
        assert limiter.check(KEY, login).allowed is True

    def test_lockout_steps_escalate_and_saturate(self, limiter: RateLimiter, clock: FakeClock) -> None:
        login = policy(max_requests=2, steps=(1_000, 5_000), reset_on_success=True)

        durations = []
        for _ in range(3):
            limiter.record(KEY, login, success=False)
            blocked = limiter.record(KEY, login, success=False)
            assert blocked.allowed is False
            durations.append(blocked.reset_in_ms)
            clock.advance(blocked.reset_in_ms)

        assert durations == [1_000, 5_000, 5_000]

    def test_block_is_reported_once(self, clock: FakeClock) -> None:
        buffer = SystemLogBuffer(capacity=10)
        limiter = RateLimiter(clock=clock, log_buffer=buffer)
        login = policy(max_requests=1, steps=(1_000,))

        limiter.record(KEY, login, success=False)
        limiter.check(KEY, login)
        limiter.check(KEY, login)

        entries = buffer.get_filtered(source="rate_limit").entries
        assert len(entries) == 1
        assert entries[0].level.value == "warning"
        assert entries[0].details["key"] == "login:1.2.3.4***"


class TestSweep:
    def test_sweep_removes_idle_entries_and_keeps_blocked(self, limiter: RateLimiter, clock: FakeClock) -> None:
        generic = policy(max_requests=1, window_ms=1_000)
        login = policy(max_requests=1, steps=(60_000,))
        limiter.check("search:10.0.0.1", generic)
        limiter.record(KEY, login, success=False)

        clock.advance(2_000)
        removed = limiter.sweep(max_hold_ms=1_000)

        assert removed == 1
        assert limiter.store.get("search:10.0.0.1") is None
        assert limiter.store.get(KEY) is not None

    def test_sweep_keeps_recent_entries(self, limiter: RateLimiter, clock: FakeClock) -> None:
        limiter.check(KEY, policy())
        clock.advance(10)

        assert limiter.sweep(max_hold_ms=1_000) == 0
        assert len(limiter.store) == 1


class TestConfiguration:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_requests": 0, "window_ms": 1_000},
            {"max_requests": 5, "window_ms": -1},
            {"max_requests": True, "window_ms": 1_000},
            {"max_requests": 5, "window_ms": 1_000, "lockout_steps_ms": (0,)},
        ],
    )
    def test_rejects_invalid_config(self, kwargs) -> None:
        with pytest.raises(ValueError):
            RateLimitConfig(**kwargs)

    @pytest.mark.parametrize(
        "key", ["", "no-scope", "login:", "login:a b", "a:" + "x" * 300]
    )
    def test_rejects_malformed_keys(self, key: str) -> None:
        with pytest.raises(ValueError):
            validate_key(key)

    def test_accepts_ipv6_identifier(self) -> None:
        assert validate_key("login:::1") == "login:::1"

    def test_make_key_hashes_identifiers(self) -> None:
        key = make_key("login_account", "User@Example.com", hashed=True)

        assert key.startswith("login_account:")
        assert "example" not in key.lower()
        assert len(key.split(":", 1)[1]) == 64

    def test_build_policies_uses_settings(self) -> None:
        policies = build_policies(Settings(login_max_attempts=7, login_lockout_steps_seconds=[30]))

        login = policies[LOGIN_POLICY]
        assert login.reset_on_success is True
        assert login.config.max_requests == 7
        assert login.config.window_ms == 900_000
        assert login.config.lockout_steps_ms == (30_000,)
        assert set(policies) == {"auth", "admin", "login", "login_account"}
        assert policies["auth"].config.max_requests == 10
        assert policies["admin"].config.max_requests == 200


def test_concurrent_checks_never_overshoot() -> None:
    limiter = RateLimiter()
    generic = policy(max_requests=50)
    allowed: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(25):
            decision = limiter.check(KEY, generic)
            with lock:
                allowed.append(decision.allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(allowed) == 50
    assert len(allowed) == 200
