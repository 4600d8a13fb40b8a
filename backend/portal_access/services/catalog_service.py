"""
Administrative writes over the permission catalog and per-user overrides.

Catalog edits are reserved to the top role. Override management is gated
by ``PERMISSIONS_MANAGE`` at the HTTP layer. Here an override can never
target a top-role account or the acting account itself.

Every successful write appends exactly one ``info`` entry (source
``permissions``) to the system log buffer.
"""
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.roles import Role, parse_permission_code
from ..crud.permission import PermissionRepository
from ..crud.user import UserRepository
from ..crud.user_permission_override import UserPermissionOverrideRepository
from ..errors import ConflictError, NotFoundError, PermissionError, ValidationError
from ..logbuffer import SystemLogBuffer
from ..models.permission import Permission
from ..models.user import User
from ..models.user_permission_override import (
    EFFECT_GRANT,
    EFFECT_REVOKE,
    UserPermissionOverride,
)

logger = logging.getLogger("portal.permissions.catalog")

LOG_SOURCE = "permissions"
OVERRIDE_EFFECTS = frozenset({EFFECT_GRANT, EFFECT_REVOKE})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CatalogStats:
    total: int
    active: int
    inactive: int
    group_count: int


@dataclass(frozen=True)
class CatalogView:
    permissions: list[Permission]
    grouped: dict[str, list[Permission]]
    stats: CatalogStats


@dataclass(frozen=True)
class DeleteOutcome:
    code: str
    deleted: bool

    @property
    def deactivated(self) -> bool:
        return not self.deleted


def _is_top(user: User) -> bool:
    try:
        return Role.parse(user.role).is_top
    except ValueError:
        return False


def _require_text(value: str | None, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    return text


def _parse_code(raw: str) -> str:
    try:
        return parse_permission_code(raw)
    except ValueError as exc:
        raise ValidationError(str(exc)) from None


class PermissionCatalogService:
    def __init__(
        self,
        session: AsyncSession,
        log_buffer: SystemLogBuffer,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.permission_repo = PermissionRepository(session)
        self.override_repo = UserPermissionOverrideRepository(session)
        self.user_repo = UserRepository(session)
        self._log_buffer = log_buffer
        self._clock = clock

    def _require_top_role(self, actor: User) -> None:
        if not _is_top(actor):
            raise PermissionError()

    def _audit(self, actor: User, action: str, message: str, **details: Any) -> None:
        self._log_buffer.info(
            LOG_SOURCE,
            message,
            {"actor_id": str(actor.id), "action": action, **details},
        )

    async def _get_permission(self, code: str) -> Permission:
        permission = await self.permission_repo.get_by_code(_parse_code(code))
        if permission is None:
            raise NotFoundError("Permission not found")
        return permission

    async def list_catalog(self, viewer: User) -> CatalogView:
        """Catalog ordered by (group, display_order) and grouped by label.

        The top role also sees inactive permissions.
        """
        permissions = await self.permission_repo.list_all(include_inactive=_is_top(viewer))
        grouped: OrderedDict[str, list[Permission]] = OrderedDict()
        for permission in permissions:
            grouped.setdefault(permission.group_label, []).append(permission)
        active = sum(1 for permission in permissions if permission.is_active)
        return CatalogView(
            permissions=permissions,
            grouped=dict(grouped),
            stats=CatalogStats(
                total=len(permissions),
                active=active,
                inactive=len(permissions) - active,
                group_count=len(grouped),
            ),
        )

    async def create_permission(
        self,
        actor: User,
        *,
        code: str,
        name: str,
        group: str,
        group_label: str | None = None,
        description: str | None = None,
    ) -> Permission:
        self._require_top_role(actor)
        normalized = _parse_code(code)
        name = _require_text(name, "name")
        group = _require_text(group, "group")
        label = (group_label or "").strip() or group

        if await self.permission_repo.get_by_code(normalized) is not None:
            raise ConflictError(
                "Permission code already exists",
                code="DUPLICATE_PERMISSION",
                details={"code": normalized},
            )

        order = await self.permission_repo.max_order_in_group(group) + 1
        permission = await self.permission_repo.create(
            code=normalized,
            name=name,
            group=group,
            group_label=label,
            display_order=order,
            description=description,
        )
        self._audit(
            actor,
            "permission.create",
            f"Permission {normalized} created",
            code=normalized,
            group=group,
        )
        return permission

    async def update_permission(
        self,
        actor: User,
        code: str,
        *,
        name: str | None = None,
        description: str | None = None,
        group_label: str | None = None,
        new_code: str | None = None,
    ) -> Permission:
        self._require_top_role(actor)
        permission = await self._get_permission(code)
        if new_code is not None and _parse_code(new_code) != permission.code:
            raise ValidationError("Permission code cannot be changed")

        changed: list[str] = []
        if name is not None:
            permission.name = _require_text(name, "name")
            changed.append("name")
        if description is not None:
            permission.description = description.strip() or None
            changed.append("description")
        if group_label is not None:
            permission.group_label = _require_text(group_label, "group_label")
            changed.append("group_label")
        if not changed:
            raise ValidationError("No changes supplied")

        permission = await self.permission_repo.save(permission)
        self._audit(
            actor,
            "permission.update",
            f"Permission {permission.code} updated",
            code=permission.code,
            fields=changed,
        )
        return permission

    async def set_active(self, actor: User, code: str, active: bool) -> Permission:
        self._require_top_role(actor)
        permission = await self._get_permission(code)
        permission.is_active = bool(active)
        permission = await self.permission_repo.save(permission)
        state = "activated" if permission.is_active else "deactivated"
        self._audit(
            actor,
            "permission.toggle",
            f"Permission {permission.code} {state}",
            code=permission.code,
            is_active=permission.is_active,
        )
        return permission

    async def reorder_within_group(
        self, actor: User, group: str, ordered_codes: list[str]
    ) -> list[Permission]:
        self._require_top_role(actor)
        members = await self.permission_repo.list_by_group(group)
        if not members:
            raise NotFoundError("Permission group not found")

        wanted = [_parse_code(code) for code in ordered_codes]
        by_code = {permission.code: permission for permission in members}
        if len(set(wanted)) != len(wanted) or set(wanted) != set(by_code):
            raise ValidationError(
                "Ordered codes must list every permission of the group exactly once",
                details={"expected": sorted(by_code)},
            )

        reordered = []
        for position, code in enumerate(wanted, start=1):
            permission = by_code[code]
            permission.display_order = position
            reordered.append(permission)
        await self.permission_repo.save_all(reordered)
        self._audit(
            actor,
            "permission.reorder",
            f"Permission group {group} reordered",
            group=group,
            order=wanted,
        )
        return reordered

    async def delete_permission(self, actor: User, code: str) -> DeleteOutcome:
        """Delete a permission, or deactivate it while overrides still reference it."""
        self._require_top_role(actor)
        permission = await self._get_permission(code)
        references = await self.override_repo.count_for_code(permission.code)
        if references:
            permission.is_active = False
            await self.permission_repo.save(permission)
            self._audit(
                actor,
                "permission.deactivate",
                f"Permission {permission.code} deactivated instead of deleted",
                code=permission.code,
                overrides=references,
            )
            return DeleteOutcome(code=permission.code, deleted=False)

        await self.permission_repo.delete(permission)
        self._audit(
            actor,
            "permission.delete",
            f"Permission {permission.code} deleted",
            code=permission.code,
        )
        return DeleteOutcome(code=permission.code, deleted=True)

    async def _get_target(self, actor: User, user_id: uuid.UUID) -> User:
        if actor.id == user_id:
            raise PermissionError("Permission overrides cannot target your own account")
        target = await self.user_repo.get_by_id(user_id)
        if target is None:
            raise NotFoundError("User not found")
        if _is_top(target):
            raise PermissionError("Top-role accounts cannot receive permission overrides")
        return target

    async def list_overrides(self, user_id: uuid.UUID) -> list[UserPermissionOverride]:
        if await self.user_repo.get_by_id(user_id) is None:
            raise NotFoundError("User not found")
        return await self.override_repo.list_for_user(user_id)

    async def set_override(
        self,
        actor: User,
        user_id: uuid.UUID,
        code: str,
        effect: str,
        expires_at: datetime | None = None,
    ) -> UserPermissionOverride:
        effect = (effect or "").strip().lower()
        if effect not in OVERRIDE_EFFECTS:
            raise ValidationError("effect must be 'grant' or 'revoke'")
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= self._clock():
                raise ValidationError("expires_at must be in the future")

        target = await self._get_target(actor, user_id)
        permission = await self._get_permission(code)
        if effect == EFFECT_GRANT and not permission.is_active:
            raise ValidationError("Inactive permissions cannot be granted")

        override = await self.override_repo.upsert(
            user_id=target.id,
            code=permission.code,
            effect=effect,
            granted_by=actor.id,
            expires_at=expires_at,
        )
        self._audit(
            actor,
            f"override.{effect}",
            f"Permission {permission.code} {effect} set for user {target.id}",
            code=permission.code,
            target_user_id=str(target.id),
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return override

    async def remove_override(self, actor: User, user_id: uuid.UUID, code: str) -> None:
        target = await self._get_target(actor, user_id)
        normalized = _parse_code(code)
        override = await self.override_repo.get(target.id, normalized)
        if override is None:
            raise NotFoundError("Permission override not found")
        await self.override_repo.delete(override)
        self._audit(
            actor,
            "override.remove",
            f"Permission {normalized} override removed for user {target.id}",
            code=normalized,
            target_user_id=str(target.id),
        )
