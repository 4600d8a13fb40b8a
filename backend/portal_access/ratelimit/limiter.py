"""
Fixed-window rate limiter with stepped lockouts.

One implementation serves every policy: generic per-action limits and the
login brute-force limiter differ only in their ``RateLimitPolicy``.

Rules:
- Every ``check`` counts as one attempt, so probing with ``check`` alone is
  never free. A following ``record(success=False)`` confirms that pending
  attempt instead of counting it twice.
- Once ``count >= max_requests`` after a denied check or a failed record,
  the key is blocked. The block length comes from the policy's lockout
  steps, indexed by how many times the key has already been locked out.
- A block is never shortened, extended or lifted before ``blocked_until``,
  not even by a successful login.
- ``count`` is clamped to ``max_requests + 1``.
"""
from __future__ import annotations

import hashlib
import logging
import math
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from .store import CounterEntry, CounterStore

if TYPE_CHECKING:
    from ..logbuffer import SystemLogBuffer

MAX_KEY_LENGTH = 256
IDENTIFIER_HASH_LENGTH = 64
KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+:\S+$")

logger = logging.getLogger("portal.ratelimit")


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_ms: int
    lockout_steps_ms: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        for name in ("max_requests", "window_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        for step in self.lockout_steps_ms:
            if isinstance(step, bool) or not isinstance(step, int) or step <= 0:
                raise ValueError(f"lockout steps must be positive integers, got {step!r}")

    @property
    def longest_hold_ms(self) -> int:
        return max((self.window_ms, *self.lockout_steps_ms))


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    config: RateLimitConfig
    reset_on_success: bool = False


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in_ms: int
    blocked: bool = False

    @property
    def retry_after_s(self) -> int | None:
        if self.allowed:
            return None
        return max(1, math.ceil(self.reset_in_ms / 1000))


@dataclass
class _Outcome:
    decision: RateLimitDecision
    newly_blocked: bool = False
    lockouts: int = 0
    lockout_ms: int = 0


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not key:
        raise ValueError("rate limit key must be a non-empty string")
    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(f"rate limit key exceeds {MAX_KEY_LENGTH} characters")
    if not KEY_PATTERN.match(key):
        raise ValueError(f"rate limit key must look like '<scope>:<identifier>', got {key!r}")
    return key


def make_key(scope: str, identifier: str, *, hashed: bool = False) -> str:
    """Compose a limiter key; ``hashed`` keeps account identifiers out of memory dumps."""
    if not identifier:
        raise ValueError("identifier is required for rate limiting")
    if hashed:
        identifier = hashlib.sha256(identifier.encode()).hexdigest()[:IDENTIFIER_HASH_LENGTH]
    return validate_key(f"{scope}:{identifier}")


def mask_key(key: str) -> str:
    scope, _, identifier = key.partition(":")
    return f"{scope}:{identifier[:8]}***"


class RateLimiter:
    def __init__(
        self,
        store: CounterStore | None = None,
        *,
        clock: Callable[[], float] = _monotonic_ms,
        log_buffer: "SystemLogBuffer | None" = None,
    ) -> None:
        self._store = store or CounterStore()
        self._clock = clock
        self._log_buffer = log_buffer

    @property
    def store(self) -> CounterStore:
        return self._store

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        validate_key(key)
        config = policy.config
        now = self._clock()

        def apply(entry: CounterEntry | None) -> tuple[CounterEntry, _Outcome]:
            entry = self._prepare(entry, config, now)
            if entry.is_blocked(now):
                entry.last_seen = now
                return entry, self._denied(entry.blocked_until, now)

            count_before = entry.count
            entry.count = min(count_before + 1, config.max_requests + 1)
            entry.last_seen = now
            if count_before < config.max_requests:
                entry.pending = min(entry.pending + 1, entry.count)
                reset_in = entry.window_started_at + config.window_ms - now
                return entry, _Outcome(
                    RateLimitDecision(
                        allowed=True,
                        remaining=config.max_requests - count_before,
                        reset_in_ms=max(0, math.ceil(reset_in)),
                    )
                )
            return entry, self._block(entry, config, now)

        outcome = self._store.mutate(key, apply)
        self._report(key, policy, outcome)
        return outcome.decision

    def record(self, key: str, policy: RateLimitPolicy, success: bool) -> RateLimitDecision:
        validate_key(key)
        config = policy.config
        now = self._clock()

        def apply(entry: CounterEntry | None) -> tuple[CounterEntry | None, _Outcome]:
            if entry is not None and entry.is_blocked(now):
                return entry, self._denied(entry.blocked_until, now)

            if success:
                full = RateLimitDecision(
                    allowed=True, remaining=config.max_requests, reset_in_ms=0
                )
                if policy.reset_on_success or entry is None:
                    return None, _Outcome(full)
                entry.pending = max(0, entry.pending - 1)
                return entry, _Outcome(self._allowed(entry, config, now))

            entry = self._prepare(entry, config, now)
            entry.last_seen = now
            if entry.pending > 0:
                entry.pending -= 1
            else:
                entry.count = min(entry.count + 1, config.max_requests + 1)
            if entry.count >= config.max_requests:
                return entry, self._block(entry, config, now)
            return entry, _Outcome(self._allowed(entry, config, now))

        outcome = self._store.mutate(key, apply)
        self._report(key, policy, outcome)
        return outcome.decision

    def sweep(self, now: float | None = None, *, max_hold_ms: int = 0) -> int:
        """Drop entries that are neither blocked nor seen within ``max_hold_ms``."""
        current = self._clock() if now is None else now

        def expired(entry: CounterEntry) -> bool:
            if entry.is_blocked(current):
                return False
            return current - entry.last_seen > max_hold_ms

        removed = self._store.evict(expired)
        if removed:
            logger.debug("Rate limit sweep removed %d entries", removed)
        return removed

    def _prepare(self, entry: CounterEntry | None, config: RateLimitConfig, now: float) -> CounterEntry:
        if entry is None:
            return CounterEntry(count=0, window_started_at=now, last_seen=now)
        if entry.blocked_until is not None:
            if now >= entry.blocked_until:
                entry.blocked_until = None
                entry.restart_window(now)
        elif now - entry.window_started_at > config.window_ms:
            entry.restart_window(now)
        return entry

    def _allowed(self, entry: CounterEntry, config: RateLimitConfig, now: float) -> RateLimitDecision:
        reset_in = entry.window_started_at + config.window_ms - now
        return RateLimitDecision(
            allowed=True,
            remaining=max(0, config.max_requests - entry.count),
            reset_in_ms=max(0, math.ceil(reset_in)),
        )

    def _denied(self, blocked_until: float, now: float) -> _Outcome:
        return _Outcome(
            RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_in_ms=max(1, math.ceil(blocked_until - now)),
                blocked=True,
            )
        )

    def _block(self, entry: CounterEntry, config: RateLimitConfig, now: float) -> _Outcome:
        steps = config.lockout_steps_ms
        if steps:
            duration = steps[min(entry.lockouts, len(steps) - 1)]
            blocked_until = now + duration
        else:
            blocked_until = max(entry.window_started_at + config.window_ms, now + 1)
        entry.blocked_until = blocked_until
        entry.lockouts += 1
        outcome = self._denied(blocked_until, now)
        outcome.newly_blocked = True
        outcome.lockouts = entry.lockouts
        outcome.lockout_ms = outcome.decision.reset_in_ms
        return outcome

    def _report(self, key: str, policy: RateLimitPolicy, outcome: _Outcome) -> None:
        if not outcome.newly_blocked:
            return
        masked = mask_key(key)
        logger.warning(
            "Rate limit exceeded policy=%s key=%s lockouts=%d lockout_ms=%d",
            policy.name,
            masked,
            outcome.lockouts,
            outcome.lockout_ms,
        )
        if self._log_buffer is not None:
            self._log_buffer.warning(
                "rate_limit",
                f"Rate limit exceeded for policy '{policy.name}'",
                {
                    "key": masked,
                    "policy": policy.name,
                    "lockouts": outcome.lockouts,
                    "lockout_ms": outcome.lockout_ms,
                },
            )
