import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ...bootstrap import AccessServices
from ...crud.user import UserRepository
from ...errors import AuthError, RateLimitedError
from ...models.user import User
from ...ratelimit import LOGIN_ACCOUNT_POLICY, LOGIN_POLICY, make_key
from ...security.passwords import verify_password
from ...security.tokens import create_access_token

logger = logging.getLogger("portal.auth")

LOG_SOURCE = "auth"
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    attempts_remaining: int


async def _authenticate_user(db: AsyncSession, email: str, password: str) -> User | None:
    user = await UserRepository(db).get_by_email(email)
    # bcrypt blocks for tens of milliseconds per call
    password_hash = user.password_hash if user else None
    if not await run_in_threadpool(verify_password, password, password_hash):
        return None
    if user is None or not user.is_active:
        return None
    return user


async def login_user(
    db: AsyncSession,
    services: AccessServices,
    email: str,
    password: str,
    *,
    client_ip: str,
) -> LoginResult:
    """Password login behind the IP and account brute-force limiters.

    Both limiters are checked before the password hash is touched. Every
    check counts as an attempt; the outcome is recorded afterwards so a
    failure confirms that attempt and a success clears both keys.
    """
    limiter = services.limiter
    attempts = [
        (make_key(LOGIN_POLICY, client_ip), services.policy(LOGIN_POLICY)),
        (
            make_key(LOGIN_ACCOUNT_POLICY, email.strip().lower(), hashed=True),
            services.policy(LOGIN_ACCOUNT_POLICY),
        ),
    ]

    for key, policy in attempts:
        decision = limiter.check(key, policy)
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_s or 1)

    user = await _authenticate_user(db, email, password)
    if user is None:
        outcomes = [limiter.record(key, policy, success=False) for key, policy in attempts]
        remaining = min(outcome.remaining for outcome in outcomes)
        services.log_buffer.warning(
            LOG_SOURCE,
            "Failed login attempt",
            {"client_ip": client_ip, "attempts_remaining": remaining},
        )
        raise AuthError(
            INVALID_CREDENTIALS_MESSAGE, details={"attempts_remaining": remaining}
        )

    for key, policy in attempts:
        limiter.record(key, policy, success=True)

    services.log_buffer.info(
        LOG_SOURCE,
        "User logged in",
        {"user_id": str(user.id), "client_ip": client_ip},
    )
    logger.info("Login succeeded user_id=%s", user.id)
    return LoginResult(
        access_token=create_access_token(str(user.id), user.role),
        attempts_remaining=services.policy(LOGIN_POLICY).config.max_requests,
    )
