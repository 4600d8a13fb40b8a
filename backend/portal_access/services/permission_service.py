import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.roles import Role, parse_permission_code, role_defaults
from ..crud.permission import PermissionRepository
from ..crud.user import UserRepository
from ..crud.user_permission_override import UserPermissionOverrideRepository
from ..logbuffer import SystemLogBuffer
from ..models.user_permission_override import EFFECT_GRANT, EFFECT_REVOKE

logger = logging.getLogger("portal.permissions")

LOG_SOURCE = "permissions"

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Override:
    code: str
    effect: str
    expires_at: datetime | None = None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


def merge_effective_permissions(
    defaults: Iterable[str],
    overrides: Iterable[Override],
    active_codes: frozenset[str],
    now: datetime,
) -> frozenset[str]:
    """(defaults | grants) - revokes, restricted to active codes.

    Revoke wins over grant for the same code. Expired overrides are
    ignored, as are overrides for codes that are not active.
    """
    grants: set[str] = set()
    revokes: set[str] = set()
    for override in overrides:
        if not override.is_live(now):
            continue
        if override.effect == EFFECT_REVOKE:
            revokes.add(override.code)
        elif override.effect == EFFECT_GRANT:
            grants.add(override.code)
    return frozenset((set(defaults) | grants) - revokes) & active_codes


class PermissionResolver:
    """Computes a user's effective permission set.

    Fails closed: an unknown or inactive user, an unparseable role, or any
    persistence error yields the empty set. The failure is logged and
    recorded in the system log buffer; nothing is raised to the caller.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        log_buffer: SystemLogBuffer,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self._log_buffer = log_buffer
        self._clock = clock

    async def resolve(self, user_id: uuid.UUID) -> frozenset[str]:
        try:
            async with self._session_factory() as session:
                user = await UserRepository(session).get_by_id(user_id)
                if user is None or not user.is_active:
                    self._log_buffer.warning(
                        LOG_SOURCE,
                        "Permission lookup for unknown or inactive user",
                        {"user_id": str(user_id)},
                    )
                    return frozenset()

                role = Role.parse(user.role)
                active_codes = await PermissionRepository(session).list_active_codes()
                if role.is_top:
                    return active_codes

                rows = await UserPermissionOverrideRepository(session).list_for_user(user_id)
        except Exception as exc:
            logger.error("Permission resolution failed for user_id=%s: %s", user_id, exc, exc_info=exc)
            self._log_buffer.error(
                LOG_SOURCE,
                "Permission resolution failed",
                {"user_id": str(user_id), "error": type(exc).__name__},
            )
            return frozenset()

        overrides = [
            Override(code=row.permission_code, effect=row.effect, expires_at=row.expires_at)
            for row in rows
        ]
        return merge_effective_permissions(
            role_defaults(role), overrides, active_codes, self._clock()
        )

    async def check(self, user_id: uuid.UUID, code: str) -> bool:
        try:
            wanted = parse_permission_code(code)
        except ValueError:
            return False
        return wanted in await self.resolve(user_id)

    async def can_all(self, user_id: uuid.UUID, codes: Iterable[str]) -> bool:
        try:
            wanted = {parse_permission_code(code) for code in codes}
        except ValueError:
            return False
        if not wanted:
            return True
        return wanted <= await self.resolve(user_id)

    async def can_any(self, user_id: uuid.UUID, codes: Iterable[str]) -> bool:
        wanted: set[str] = set()
        for code in codes:
            try:
                wanted.add(parse_permission_code(code))
            except ValueError:
                continue
        if not wanted:
            return False
        return not wanted.isdisjoint(await self.resolve(user_id))
