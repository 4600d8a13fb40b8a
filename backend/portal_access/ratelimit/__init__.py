from .limiter import (
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    RateLimitPolicy,
    make_key,
    validate_key,
)
from .network import client_ip
from .policies import (
    ADMIN_POLICY,
    AUTH_POLICY,
    LOGIN_ACCOUNT_POLICY,
    LOGIN_POLICY,
    build_policies,
)
from .store import CounterEntry, CounterStore

__all__ = [
    "ADMIN_POLICY",
    "AUTH_POLICY",
    "CounterEntry",
    "CounterStore",
    "LOGIN_ACCOUNT_POLICY",
    "LOGIN_POLICY",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitPolicy",
    "RateLimiter",
    "build_policies",
    "client_ip",
    "make_key",
    "validate_key",
]
