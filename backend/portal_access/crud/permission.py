from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.permission import Permission


class PermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        code: str,
        name: str,
        group: str,
        group_label: str,
        display_order: int,
        description: str | None = None,
        is_active: bool = True,
    ) -> Permission:
        permission = Permission(
            code=code,
            name=name,
            group=group,
            group_label=group_label,
            display_order=display_order,
            description=description,
            is_active=is_active,
        )
        self.session.add(permission)
        await self.session.commit()
        await self.session.refresh(permission)
        return permission

    async def get_by_code(self, code: str) -> Permission | None:
        result = await self.session.execute(
            select(Permission).where(Permission.code == code)
        )
        return result.scalar_one_or_none()

    async def list_all(self, *, include_inactive: bool = True) -> list[Permission]:
        query = select(Permission).order_by(Permission.group, Permission.display_order)
        if not include_inactive:
            query = query.where(Permission.is_active.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_by_group(self, group: str) -> list[Permission]:
        result = await self.session.execute(
            select(Permission)
            .where(Permission.group == group)
            .order_by(Permission.display_order)
        )
        return list(result.scalars().all())

    async def list_active_codes(self) -> frozenset[str]:
        result = await self.session.execute(
            select(Permission.code).where(Permission.is_active.is_(True))
        )
        return frozenset(result.scalars().all())

    async def max_order_in_group(self, group: str) -> int:
        result = await self.session.execute(
            select(func.max(Permission.display_order)).where(Permission.group == group)
        )
        return result.scalar_one_or_none() or 0

    async def save(self, permission: Permission) -> Permission:
        self.session.add(permission)
        await self.session.commit()
        await self.session.refresh(permission)
        return permission

    async def save_all(self, permissions: list[Permission]) -> None:
        self.session.add_all(permissions)
        await self.session.commit()

    async def delete(self, permission: Permission) -> None:
        await self.session.delete(permission)
        await self.session.commit()
