from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

DEFAULT_STRIPES = 64

T = TypeVar("T")


@dataclass
class CounterEntry:
    count: int
    window_started_at: float
    last_seen: float
    pending: int = 0
    blocked_until: float | None = None
    lockouts: int = 0

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until

    def restart_window(self, now: float) -> None:
        self.count = 0
        self.pending = 0
        self.window_started_at = now


class _Stripe:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, CounterEntry] = {}


class CounterStore:
    """Per-key counters partitioned into lock stripes.

    Every read-modify-write on a key runs under its stripe's lock, so two
    concurrent requests on the same key can never both observe the
    pre-increment count. Distinct keys on different stripes proceed in
    parallel. Nothing here awaits.
    """

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes <= 0:
            raise ValueError("stripes must be greater than 0")
        self._stripes = [_Stripe() for _ in range(stripes)]

    def _stripe_for(self, key: str) -> _Stripe:
        return self._stripes[hash(key) % len(self._stripes)]

    def mutate(
        self,
        key: str,
        fn: Callable[[CounterEntry | None], tuple[CounterEntry | None, T]],
    ) -> T:
        """Atomically replace the entry for ``key`` with ``fn``'s result.

        ``fn`` receives the current entry (or None) and returns the new
        entry (None deletes it) together with a value handed back to the
        caller.
        """
        stripe = self._stripe_for(key)
        with stripe.lock:
            updated, result = fn(stripe.entries.get(key))
            if updated is None:
                stripe.entries.pop(key, None)
            else:
                stripe.entries[key] = updated
        return result

    def get(self, key: str) -> CounterEntry | None:
        stripe = self._stripe_for(key)
        with stripe.lock:
            entry = stripe.entries.get(key)
            if entry is None:
                return None
            return CounterEntry(**vars(entry))

    def evict(self, predicate: Callable[[CounterEntry], bool]) -> int:
        removed = 0
        for stripe in self._stripes:
            with stripe.lock:
                stale = [key for key, entry in stripe.entries.items() if predicate(entry)]
                for key in stale:
                    del stripe.entries[key]
                removed += len(stale)
        return removed

    def __len__(self) -> int:
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total
