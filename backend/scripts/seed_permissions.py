"""
Load the declared permission catalog into the database.

Existing codes are left untouched, so the script is safe to re-run after
administrators have renamed, reordered or deactivated permissions.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
import logging
from collections import defaultdict

from portal_access.auth.roles import PERMISSION_CATALOG
from portal_access.crud.permission import PermissionRepository
from portal_access.database import AsyncSessionLocal, dispose_engine

logger = logging.getLogger("portal.scripts.seed_permissions")


async def seed_permissions() -> int:
    created = 0
    positions: dict[str, int] = defaultdict(int)
    async with AsyncSessionLocal() as session:
        repo = PermissionRepository(session)
        for definition in PERMISSION_CATALOG:
            positions[definition.group] += 1
            if await repo.get_by_code(definition.code) is not None:
                logger.info("Permission %s already exists, skipping", definition.code)
                continue
            await repo.create(
                code=definition.code,
                name=definition.name,
                group=definition.group,
                group_label=definition.group_label,
                display_order=positions[definition.group],
            )
            created += 1
            logger.info("Created permission %s", definition.code)
    return created


async def main() -> None:
    try:
        created = await seed_permissions()
        logger.info("Seeded %d of %d permissions", created, len(PERMISSION_CATALOG))
    finally:
        await dispose_engine()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    asyncio.run(main())
