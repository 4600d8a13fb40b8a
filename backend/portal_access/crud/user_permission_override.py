import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user_permission_override import UserPermissionOverride


class UserPermissionOverrideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_user(self, user_id: uuid.UUID) -> list[UserPermissionOverride]:
        result = await self.session.execute(
            select(UserPermissionOverride)
            .where(UserPermissionOverride.user_id == user_id)
            .order_by(UserPermissionOverride.permission_code)
        )
        return list(result.scalars().all())

    async def get(self, user_id: uuid.UUID, code: str) -> UserPermissionOverride | None:
        result = await self.session.execute(
            select(UserPermissionOverride).where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.permission_code == code,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        user_id: uuid.UUID,
        code: str,
        effect: str,
        granted_by: uuid.UUID | None,
        expires_at: datetime | None,
    ) -> UserPermissionOverride:
        override = await self.get(user_id, code)
        if override is None:
            override = UserPermissionOverride(user_id=user_id, permission_code=code)
        override.effect = effect
        override.granted_by = granted_by
        override.expires_at = expires_at
        self.session.add(override)
        await self.session.commit()
        await self.session.refresh(override)
        return override

    async def delete(self, override: UserPermissionOverride) -> None:
        await self.session.delete(override)
        await self.session.commit()

    async def count_for_code(self, code: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(UserPermissionOverride)
            .where(UserPermissionOverride.permission_code == code)
        )
        return int(result.scalar_one())
