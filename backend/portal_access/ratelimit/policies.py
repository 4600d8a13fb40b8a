from __future__ import annotations

from typing import TYPE_CHECKING, Final

from .limiter import RateLimitConfig, RateLimitPolicy

if TYPE_CHECKING:
    from ..config import Settings

LOGIN_POLICY: Final = "login"
LOGIN_ACCOUNT_POLICY: Final = "login_account"

MINUTE_MS: Final = 60_000

AUTH_POLICY: Final = "auth"
ADMIN_POLICY: Final = "admin"

# Per-action limits outside the credential check; fixed window, no escalation.
GENERIC_POLICIES: Final[dict[str, RateLimitConfig]] = {
    AUTH_POLICY: RateLimitConfig(max_requests=10, window_ms=MINUTE_MS),
    ADMIN_POLICY: RateLimitConfig(max_requests=200, window_ms=MINUTE_MS),
}


def login_config(settings: "Settings") -> RateLimitConfig:
    return RateLimitConfig(
        max_requests=settings.login_max_attempts,
        window_ms=settings.login_window_seconds * 1000,
        lockout_steps_ms=tuple(step * 1000 for step in settings.login_lockout_steps_seconds),
    )


def build_policies(settings: "Settings") -> dict[str, RateLimitPolicy]:
    """Build every named policy; invalid settings raise ValueError here, at startup."""
    policies = {
        name: RateLimitPolicy(name=name, config=config)
        for name, config in GENERIC_POLICIES.items()
    }
    config = login_config(settings)
    policies[LOGIN_POLICY] = RateLimitPolicy(LOGIN_POLICY, config, reset_on_success=True)
    policies[LOGIN_ACCOUNT_POLICY] = RateLimitPolicy(
        LOGIN_ACCOUNT_POLICY, config, reset_on_success=True
    )
    return policies


def longest_hold_ms(policies: dict[str, RateLimitPolicy]) -> int:
    return max(policy.config.longest_hold_ms for policy in policies.values())
