"""
Access gate: the one place that composes authentication, rate limiting and
permission checks in front of a sensitive operation.

The order is fixed: authenticate, then the rate-limit step (only for
designated calls), then the permission or role check, then the handler.
A call without an identity never reaches the limiter, so it leaves no
counter behind.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, TypeVar

from .auth.roles import Role, parse_permission_code
from .errors import AuthError, PermissionError, RateLimitedError
from .logbuffer import SystemLogBuffer
from .models.user import User
from .ratelimit import RateLimiter, RateLimitPolicy
from .services.permission_service import PermissionResolver

logger = logging.getLogger("portal.access")

LOG_SOURCE = "access"

T = TypeVar("T")


@dataclass(frozen=True)
class RequestContext:
    method: str
    path: str
    client_ip: str | None = None

    def as_details(self) -> dict[str, str | None]:
        return {"method": self.method, "path": self.path, "client_ip": self.client_ip}


@dataclass(frozen=True)
class RateLimitStep:
    key: str
    policy: RateLimitPolicy


def _role_of(identity: User) -> Role | None:
    try:
        return Role.parse(identity.role)
    except ValueError:
        return None


class AccessGate:
    def __init__(
        self,
        resolver: PermissionResolver,
        limiter: RateLimiter,
        log_buffer: SystemLogBuffer,
    ):
        self._resolver = resolver
        self._limiter = limiter
        self._log_buffer = log_buffer

    def _authenticate(self, identity: User | None) -> User:
        if identity is None:
            raise AuthError("Not authenticated")
        return identity

    def _apply_rate_limit(self, step: RateLimitStep | None) -> None:
        if step is None:
            return
        decision = self._limiter.check(step.key, step.policy)
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_s or 1)

    def _deny(
        self,
        identity: User,
        required: dict[str, object],
        context: RequestContext | None,
    ) -> PermissionError:
        details = {"user_id": str(identity.id), **required}
        if context is not None:
            details.update(context.as_details())
        logger.warning("Access denied user_id=%s required=%s", identity.id, required)
        self._log_buffer.warning(LOG_SOURCE, "Access denied", details)
        return PermissionError()

    async def authorize_permission(
        self,
        identity: User | None,
        code: str,
        *,
        context: RequestContext | None = None,
        rate_limit: RateLimitStep | None = None,
    ) -> User:
        user = self._authenticate(identity)
        self._apply_rate_limit(rate_limit)
        role = _role_of(user)
        if role is not None and role.is_top:
            return user
        if not await self._resolver.check(user.id, code):
            raise self._deny(user, {"required_permission": code}, context)
        return user

    async def authorize_any_permission(
        self,
        identity: User | None,
        codes: Iterable[str],
        *,
        context: RequestContext | None = None,
        rate_limit: RateLimitStep | None = None,
    ) -> User:
        wanted = list(codes)
        user = self._authenticate(identity)
        self._apply_rate_limit(rate_limit)
        role = _role_of(user)
        if role is not None and role.is_top:
            return user
        if not await self._resolver.can_any(user.id, wanted):
            raise self._deny(user, {"required_any": wanted}, context)
        return user

    async def authorize_roles(
        self,
        identity: User | None,
        roles: Iterable[Role],
        *,
        context: RequestContext | None = None,
        rate_limit: RateLimitStep | None = None,
    ) -> User:
        """Coarse role-only check; the top role always passes."""
        allowed = frozenset(roles)
        user = self._authenticate(identity)
        self._apply_rate_limit(rate_limit)
        role = _role_of(user)
        if role is not None and (role.is_top or role in allowed):
            return user
        raise self._deny(
            user, {"required_roles": sorted(item.value for item in allowed)}, context
        )

    async def guard_permission(
        self,
        identity: User | None,
        code: str,
        handler: Callable[[], Awaitable[T]],
        *,
        context: RequestContext | None = None,
        rate_limit: RateLimitStep | None = None,
    ) -> T:
        await self.authorize_permission(
            identity, code, context=context, rate_limit=rate_limit
        )
        return await handler()

    async def guard_roles(
        self,
        identity: User | None,
        roles: Iterable[Role],
        handler: Callable[[], Awaitable[T]],
        *,
        context: RequestContext | None = None,
        rate_limit: RateLimitStep | None = None,
    ) -> T:
        await self.authorize_roles(identity, roles, context=context, rate_limit=rate_limit)
        return await handler()


def validate_required_codes(codes: Iterable[str]) -> list[str]:
    """Normalise codes named by route declarations; a typo fails at import."""
    return [parse_permission_code(code) for code in codes]
