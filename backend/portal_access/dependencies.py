import uuid
from collections.abc import AsyncGenerator
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .auth.roles import Role
from .bootstrap import AccessServices
from .crud.user import UserRepository
from .database import get_session
from .errors import AuthError, RateLimitedError
from .gate import RateLimitStep, RequestContext, validate_required_codes
from .models.user import User
from .ratelimit import client_ip, make_key
from .security.tokens import ExpiredTokenError, InvalidTokenError, validate_access_token

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_services(request: Request) -> AccessServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Access services are not initialised")
    return services


def get_client_ip(
    request: Request, services: AccessServices = Depends(get_services)
) -> str:
    return client_ip(request, services.settings.trusted_proxies)


def get_request_context(
    request: Request, ip: str = Depends(get_client_ip)
) -> RequestContext:
    return RequestContext(method=request.method, path=request.url.path, client_ip=ip)


async def get_current_user_optional(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None

    try:
        payload = validate_access_token(credentials.credentials)
    except ExpiredTokenError:
        raise AuthError("Token has expired") from None
    except InvalidTokenError:
        raise AuthError("Invalid token") from None

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise AuthError("Invalid token payload") from None

    user = await UserRepository(db).get_by_id(user_id)
    if user is None or not user.is_active:
        raise AuthError("User not found or inactive")
    return user


async def get_current_user(
    user: User | None = Depends(get_current_user_optional),
) -> User:
    if user is None:
        raise AuthError("Not authenticated")
    return user


def _designated_step(
    services: AccessServices, user: User | None, policy_name: str | None
) -> RateLimitStep | None:
    # A missing identity is rejected by the gate before any counter is touched.
    if policy_name is None or user is None:
        return None
    return RateLimitStep(
        key=make_key(policy_name, str(user.id)),
        policy=services.policy(policy_name),
    )


def require_permission(code: str, *, rate_limit_policy: str | None = None) -> Callable:
    """Dependency allowing the request only if the caller holds ``code``."""
    (required,) = validate_required_codes([code])

    async def dependency(
        user: User | None = Depends(get_current_user_optional),
        services: AccessServices = Depends(get_services),
        context: RequestContext = Depends(get_request_context),
    ) -> User:
        return await services.gate.authorize_permission(
            user,
            required,
            context=context,
            rate_limit=_designated_step(services, user, rate_limit_policy),
        )

    return dependency


def require_any_permission(*codes: str, rate_limit_policy: str | None = None) -> Callable:
    required = validate_required_codes(codes)

    async def dependency(
        user: User | None = Depends(get_current_user_optional),
        services: AccessServices = Depends(get_services),
        context: RequestContext = Depends(get_request_context),
    ) -> User:
        return await services.gate.authorize_any_permission(
            user,
            required,
            context=context,
            rate_limit=_designated_step(services, user, rate_limit_policy),
        )

    return dependency


def require_roles(*roles: Role, rate_limit_policy: str | None = None) -> Callable:
    allowed = tuple(Role.parse(role) for role in roles)

    async def dependency(
        user: User | None = Depends(get_current_user_optional),
        services: AccessServices = Depends(get_services),
        context: RequestContext = Depends(get_request_context),
    ) -> User:
        return await services.gate.authorize_roles(
            user,
            allowed,
            context=context,
            rate_limit=_designated_step(services, user, rate_limit_policy),
        )

    return dependency


def require_top_role(*, rate_limit_policy: str | None = None) -> Callable:
    return require_roles(rate_limit_policy=rate_limit_policy)


def rate_limit(policy_name: str, scope: str | None = None) -> Callable:
    """Per-client-IP limit for endpoints that run before authentication."""
    key_scope = scope or policy_name

    def dependency(
        services: AccessServices = Depends(get_services),
        ip: str = Depends(get_client_ip),
    ) -> None:
        decision = services.limiter.check(
            make_key(key_scope, ip), services.policy(policy_name)
        )
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_s or 1)

    return dependency
