"""
Process-wide service container.

``build_services`` is called once from the application lifespan and the
result is stored on ``app.state.services``. Handlers receive it through
the ``get_services`` dependency, never through module globals, so a
shared counter store can later be swapped in at construction time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .config import Settings
from .database import AsyncSessionLocal
from .gate import AccessGate
from .logbuffer import SystemLogBuffer
from .ratelimit import CounterStore, RateLimiter, RateLimitPolicy, build_policies
from .ratelimit.policies import longest_hold_ms
from .services.permission_service import PermissionResolver, SessionFactory

logger = logging.getLogger("portal.bootstrap")


@dataclass
class AccessServices:
    settings: Settings
    log_buffer: SystemLogBuffer
    limiter: RateLimiter
    policies: dict[str, RateLimitPolicy]
    resolver: PermissionResolver
    gate: AccessGate
    session_factory: SessionFactory

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self.policies[name]
        except KeyError:
            raise ValueError(f"Unknown rate limit policy: {name}") from None

    def sweep_rate_limits(self) -> int:
        return self.limiter.sweep(max_hold_ms=longest_hold_ms(self.policies))


def build_services(
    settings: Settings,
    *,
    session_factory: SessionFactory = AsyncSessionLocal,
    clock_ms: Callable[[], float] | None = None,
) -> AccessServices:
    """Wire the access services. Bad limiter or buffer settings raise ValueError."""
    log_buffer = SystemLogBuffer(settings.log_buffer_capacity)
    policies = build_policies(settings)
    limiter_kwargs = {"log_buffer": log_buffer}
    if clock_ms is not None:
        limiter_kwargs["clock"] = clock_ms
    limiter = RateLimiter(CounterStore(), **limiter_kwargs)
    resolver = PermissionResolver(session_factory, log_buffer)

    logger.info(
        "Access services ready policies=%s log_buffer_capacity=%d",
        ",".join(sorted(policies)),
        log_buffer.capacity,
    )
    return AccessServices(
        settings=settings,
        log_buffer=log_buffer,
        limiter=limiter,
        policies=policies,
        resolver=resolver,
        gate=AccessGate(resolver, limiter, log_buffer),
        session_factory=session_factory,
    )
