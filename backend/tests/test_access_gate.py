from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeClock, make_user
from portal_access.auth.roles import Role
from portal_access.errors import AuthError, PermissionError, RateLimitedError
from portal_access.gate import AccessGate, RateLimitStep, RequestContext, validate_required_codes
from portal_access.logbuffer import SystemLogBuffer
from portal_access.ratelimit import RateLimitConfig, RateLimiter, RateLimitPolicy

ADMIN_POLICY = RateLimitPolicy("admin", RateLimitConfig(max_requests=2, window_ms=60_000))
CONTEXT = RequestContext(method="POST", path="/admin/permissions", client_ip="10.0.0.1")


@pytest.fixture
def log_buffer() -> SystemLogBuffer:
    return SystemLogBuffer(capacity=50)


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def resolver() -> MagicMock:
    resolver = MagicMock()
    resolver.check = AsyncMock(return_value=True)
    resolver.can_any = AsyncMock(return_value=True)
    return resolver


@pytest.fixture
def gate(resolver, limiter, log_buffer) -> AccessGate:
    return AccessGate(resolver, limiter, log_buffer)


def step_for(user) -> RateLimitStep:
    return RateLimitStep(key=f"admin:{user.id}", policy=ADMIN_POLICY)


class TestAuthenticationFirst:
    @pytest.mark.anyio
    async def test_missing_identity_never_touches_limiter(self, gate, limiter, resolver) -> None:
        handler = AsyncMock(return_value="done")

        with pytest.raises(AuthError):
            await gate.guard_permission(
                None,
                "EVENTS_VALIDATE",
                handler,
                rate_limit=RateLimitStep(key="admin:anonymous", policy=ADMIN_POLICY),
            )

        handler.assert_not_called()
        resolver.check.assert_not_called()
        assert len(limiter.store) == 0

    @pytest.mark.anyio
    async def test_missing_identity_on_role_guard(self, gate) -> None:
        with pytest.raises(AuthError):
            await gate.authorize_roles(None, [Role.ADMIN])


class TestPermissionCheck:
    @pytest.mark.anyio
    async def test_allowed_runs_handler(self, gate) -> None:
        user = make_user("ADMIN")
        handler = AsyncMock(return_value="validated")

        result = await gate.guard_permission(user, "EVENTS_VALIDATE", handler)

        assert result == "validated"
        handler.assert_awaited_once()

    @pytest.mark.anyio
    async def test_denial_is_logged_without_calling_handler(
        self, gate, resolver, log_buffer
    ) -> None:
        resolver.check.return_value = False
        user = make_user("CITIZEN")
        handler = AsyncMock()

        with pytest.raises(PermissionError) as exc_info:
            await gate.guard_permission(user, "EVENTS_VALIDATE", handler, context=CONTEXT)

        handler.assert_not_called()
        assert "EVENTS_VALIDATE" not in exc_info.value.message
        entries = log_buffer.get_filtered(source="access").entries
        assert len(entries) == 1
        assert entries[0].level == "warning"
        assert entries[0].details["user_id"] == str(user.id)
        assert entries[0].details["required_permission"] == "EVENTS_VALIDATE"
        assert entries[0].details["path"] == "/admin/permissions"

    @pytest.mark.anyio
    async def test_top_role_skips_resolver(self, gate, resolver) -> None:
        user = make_user("SUPER_ADMIN")

        assert await gate.authorize_permission(user, "SYSTEM_LOGS_VIEW") is user
        resolver.check.assert_not_called()

    @pytest.mark.anyio
    async def test_any_permission_denied(self, gate, resolver, log_buffer) -> None:
        resolver.can_any.return_value = False

        with pytest.raises(PermissionError):
            await gate.authorize_any_permission(
                make_user("DELEGATION"), ["EVENTS_CREATE", "EVENTS_UPDATE"]
            )

        details = log_buffer.get_filtered(source="access").entries[0].details
        assert details["required_any"] == ["EVENTS_CREATE", "EVENTS_UPDATE"]


class TestRoleCheck:
    @pytest.mark.anyio
    async def test_listed_role_passes(self, gate) -> None:
        user = make_user("ADMIN")

        assert await gate.authorize_roles(user, [Role.ADMIN, Role.GOVERNOR]) is user

    @pytest.mark.anyio
    async def test_top_role_passes_empty_role_list(self, gate) -> None:
        handler = AsyncMock(return_value=1)

        assert await gate.guard_roles(make_user("SUPER_ADMIN"), [], handler) == 1

    @pytest.mark.anyio
    async def test_other_role_is_denied(self, gate, log_buffer) -> None:
        with pytest.raises(PermissionError):
            await gate.authorize_roles(make_user("CITIZEN"), [Role.ADMIN])

        details = log_buffer.get_filtered(source="access").entries[0].details
        assert details["required_roles"] == ["ADMIN"]

    @pytest.mark.anyio
    async def test_unknown_stored_role_is_denied(self, gate) -> None:
        with pytest.raises(PermissionError):
            await gate.authorize_roles(make_user("ROOT"), [Role.ADMIN])


class TestRateLimitStep:
    @pytest.mark.anyio
    async def test_designated_call_is_limited(self, gate, limiter) -> None:
        user = make_user("ADMIN")
        step = step_for(user)
        for _ in range(2):
            await gate.authorize_permission(user, "EVENTS_VALIDATE", rate_limit=step)

        with pytest.raises(RateLimitedError) as exc_info:
            await gate.authorize_permission(user, "EVENTS_VALIDATE", rate_limit=step)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers()["Retry-After"] == "60"
        assert len(limiter.store) == 1

    @pytest.mark.anyio
    async def test_limit_applies_before_permission_check(self, gate, resolver) -> None:
        user = make_user("CITIZEN")
        step = step_for(user)
        resolver.check.return_value = False
        for _ in range(2):
            with pytest.raises(PermissionError):
                await gate.authorize_permission(user, "EVENTS_VALIDATE", rate_limit=step)

        with pytest.raises(RateLimitedError):
            await gate.authorize_permission(user, "EVENTS_VALIDATE", rate_limit=step)
        assert resolver.check.await_count == 2

    @pytest.mark.anyio
    async def test_undesignated_call_leaves_no_counter(self, gate, limiter) -> None:
        await gate.authorize_permission(make_user("ADMIN"), "EVENTS_VALIDATE")

        assert len(limiter.store) == 0


class TestRequiredCodes:
    def test_codes_are_normalised(self) -> None:
        assert validate_required_codes(["events.validate", "news-read"]) == [
            "EVENTS_VALIDATE",
            "NEWS_READ",
        ]

    def test_malformed_code_fails(self) -> None:
        with pytest.raises(ValueError):
            validate_required_codes(["not a code"])
