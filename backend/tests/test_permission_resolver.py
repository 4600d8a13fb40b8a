"""
Effective permission resolution: role defaults merged with per-user
overrides, restricted to active codes, failing closed.
"""
import random
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_user
from portal_access.auth.roles import DECLARED_CODES, ROLE_DEFAULT_PERMISSIONS, Role
from portal_access.logbuffer import SystemLogBuffer
from portal_access.models.user_permission_override import UserPermissionOverride
from portal_access.services.permission_service import (
    Override,
    PermissionResolver,
    merge_effective_permissions,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
MODULE = "portal_access.services.permission_service"


@asynccontextmanager
async def fake_session_factory():
    yield MagicMock()


def override_row(user, code: str, effect: str, expires_at=None) -> UserPermissionOverride:
    return UserPermissionOverride(
        id=uuid.uuid4(),
        user_id=user.id,
        permission_code=code,
        effect=effect,
        expires_at=expires_at,
    )


@pytest.fixture
def log_buffer() -> SystemLogBuffer:
    return SystemLogBuffer(capacity=50)


@pytest.fixture
def resolver(log_buffer: SystemLogBuffer) -> PermissionResolver:
    return PermissionResolver(fake_session_factory, log_buffer, clock=lambda: NOW)


@pytest.fixture
def repos():
    with patch(f"{MODULE}.UserRepository") as user_repo, patch(
        f"{MODULE}.PermissionRepository"
    ) as permission_repo, patch(f"{MODULE}.UserPermissionOverrideRepository") as override_repo:
        user_repo.return_value.get_by_id = AsyncMock(return_value=None)
        permission_repo.return_value.list_active_codes = AsyncMock(
            return_value=frozenset(DECLARED_CODES)
        )
        override_repo.return_value.list_for_user = AsyncMock(return_value=[])
        yield user_repo.return_value, permission_repo.return_value, override_repo.return_value


class TestMergeEffectivePermissions:
    def test_randomized_grants_and_revokes(self) -> None:
        universe = sorted(DECLARED_CODES)
        rng = random.Random(20260101)

        for _ in range(200):
            defaults = set(rng.sample(universe, rng.randint(0, 15)))
            active = frozenset(rng.sample(universe, rng.randint(0, len(universe))))
            overrides = [
                Override(code=rng.choice(universe), effect=rng.choice(["grant", "revoke"]))
                for _ in range(rng.randint(0, 20))
            ]
            grants = {o.code for o in overrides if o.effect == "grant"}
            revokes = {o.code for o in overrides if o.effect == "revoke"}

            result = merge_effective_permissions(defaults, overrides, active, NOW)

            for code in universe:
                expected = code in active and code not in revokes and (
                    code in defaults or code in grants
                )
                assert (code in result) is expected

    def test_revoke_wins_over_grant(self) -> None:
        overrides = [
            Override("EVENTS_CREATE", "grant"),
            Override("EVENTS_CREATE", "revoke"),
        ]
        result = merge_effective_permissions(
            set(), overrides, frozenset({"EVENTS_CREATE"}), NOW
        )

        assert result == frozenset()

    def test_expired_overrides_are_ignored(self) -> None:
        overrides = [
            Override("EVENTS_CREATE", "grant", NOW - timedelta(seconds=1)),
            Override("NEWS_READ", "revoke", NOW),
            Override("MAP_VIEW", "grant", NOW + timedelta(days=1)),
        ]
        result = merge_effective_permissions(
            {"NEWS_READ"},
            overrides,
            frozenset({"EVENTS_CREATE", "NEWS_READ", "MAP_VIEW"}),
            NOW,
        )

        assert result == frozenset({"NEWS_READ", "MAP_VIEW"})


class TestPermissionResolver:
    @pytest.mark.anyio
    async def test_top_role_gets_every_active_code(self, resolver, repos) -> None:
        user_repo, permission_repo, override_repo = repos
        user = make_user("SUPER_ADMIN")
        user_repo.get_by_id.return_value = user
        active = frozenset({"EVENTS_VALIDATE", "PERMISSIONS_MANAGE"})
        permission_repo.list_active_codes.return_value = active
        override_repo.list_for_user.return_value = [
            override_row(user, "EVENTS_VALIDATE", "revoke")
        ]

        assert await resolver.resolve(user.id) == active
        override_repo.list_for_user.assert_not_called()

    @pytest.mark.anyio
    async def test_role_defaults_with_overrides(self, resolver, repos) -> None:
        user_repo, _, override_repo = repos
        user = make_user("CITIZEN")
        user_repo.get_by_id.return_value = user
        override_repo.list_for_user.return_value = [
            override_row(user, "EVENTS_CREATE", "grant"),
            override_row(user, "MAP_VIEW", "revoke"),
        ]

        result = await resolver.resolve(user.id)

        expected = (ROLE_DEFAULT_PERMISSIONS[Role.CITIZEN] | {"EVENTS_CREATE"}) - {"MAP_VIEW"}
        assert result == expected

    @pytest.mark.anyio
    async def test_inactive_permission_is_not_held(self, resolver, repos) -> None:
        user_repo, permission_repo, _ = repos
        user = make_user("ADMIN")
        user_repo.get_by_id.return_value = user
        permission_repo.list_active_codes.return_value = frozenset(
            DECLARED_CODES - {"EVENTS_VALIDATE"}
        )

        assert "EVENTS_VALIDATE" in ROLE_DEFAULT_PERMISSIONS[Role.ADMIN]
        assert await resolver.check(user.id, "EVENTS_VALIDATE") is False
        assert await resolver.check(user.id, "EVENTS_DELETE") is True

    @pytest.mark.anyio
    async def test_check_normalises_codes(self, resolver, repos) -> None:
        user_repo, _, _ = repos
        user_repo.get_by_id.return_value = make_user("ADMIN")

        assert await resolver.check(uuid.uuid4(), "events.validate") is True
        assert await resolver.check(uuid.uuid4(), "not a code!") is False

    @pytest.mark.anyio
    async def test_unknown_user_fails_closed(self, resolver, repos, log_buffer) -> None:
        assert await resolver.resolve(uuid.uuid4()) == frozenset()

        entries = log_buffer.get_filtered(level="warning").entries
        assert len(entries) == 1
        assert entries[0].source == "permissions"

    @pytest.mark.anyio
    async def test_inactive_user_fails_closed(self, resolver, repos) -> None:
        user_repo, _, _ = repos
        user_repo.get_by_id.return_value = make_user("ADMIN", is_active=False)

        assert await resolver.resolve(uuid.uuid4()) == frozenset()

    @pytest.mark.anyio
    async def test_persistence_error_fails_closed(self, resolver, repos, log_buffer) -> None:
        user_repo, _, _ = repos
        user_repo.get_by_id.side_effect = RuntimeError("database unavailable")

        assert await resolver.resolve(uuid.uuid4()) == frozenset()
        assert await resolver.check(uuid.uuid4(), "NEWS_READ") is False
        assert log_buffer.get_stats().counts_by_level["error"] == 2

    @pytest.mark.anyio
    async def test_can_all_and_can_any(self, resolver, repos) -> None:
        user_repo, _, _ = repos
        user_repo.get_by_id.return_value = make_user("CITIZEN")
        user_id = uuid.uuid4()

        assert await resolver.can_all(user_id, ["NEWS_READ", "MAP_VIEW"]) is True
        assert await resolver.can_all(user_id, ["NEWS_READ", "USERS_DELETE"]) is False
        assert await resolver.can_any(user_id, ["USERS_DELETE", "MAP_VIEW"]) is True
        assert await resolver.can_any(user_id, ["USERS_DELETE", "bad code"]) is False
        assert await resolver.can_any(user_id, []) is False
