import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.roles import Role
from ..bootstrap import AccessServices
from ..dependencies import (
    get_db,
    get_services,
    require_permission,
    require_roles,
    require_top_role,
)
from ..models.user import User
from ..ratelimit import ADMIN_POLICY
from ..schemas.permission import (
    CatalogResponse,
    CatalogStatsResponse,
    GroupOrderUpdate,
    OverrideResponse,
    OverrideUpsert,
    PermissionActiveUpdate,
    PermissionCreate,
    PermissionDeleteResponse,
    PermissionResponse,
    PermissionUpdate,
    UserPermissionsResponse,
)
from ..services.catalog_service import PermissionCatalogService

router = APIRouter(prefix="/admin", tags=["admin-permissions"])


def get_catalog_service(
    db: AsyncSession = Depends(get_db),
    services: AccessServices = Depends(get_services),
) -> PermissionCatalogService:
    return PermissionCatalogService(db, services.log_buffer)


@router.get("/permissions", response_model=CatalogResponse)
async def list_permissions(
    viewer: User = Depends(require_roles(Role.ADMIN)),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> CatalogResponse:
    catalog = await service.list_catalog(viewer)
    return CatalogResponse(
        permissions=[PermissionResponse.model_validate(item) for item in catalog.permissions],
        grouped={
            label: [PermissionResponse.model_validate(item) for item in items]
            for label, items in catalog.grouped.items()
        },
        stats=CatalogStatsResponse(
            total=catalog.stats.total,
            active=catalog.stats.active,
            inactive=catalog.stats.inactive,
            group_count=catalog.stats.group_count,
        ),
    )


@router.post(
    "/permissions",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_permission(
    payload: PermissionCreate,
    actor: User = Depends(require_top_role(rate_limit_policy=ADMIN_POLICY)),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> PermissionResponse:
    permission = await service.create_permission(
        actor,
        code=payload.code,
        name=payload.name,
        group=payload.group,
        group_label=payload.group_label,
        description=payload.description,
    )
    return PermissionResponse.model_validate(permission)


@router.patch("/permissions/{code}", response_model=PermissionResponse)
async def update_permission(
    code: str,
    payload: PermissionUpdate,
    actor: User = Depends(require_top_role(rate_limit_policy=ADMIN_POLICY)),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> PermissionResponse:
    permission = await service.update_permission(
        actor,
        code,
        name=payload.name,
        description=payload.description,
        group_label=payload.group_label,
        new_code=payload.code,
    )
    return PermissionResponse.model_validate(permission)


@router.post("/permissions/{code}/active", response_model=PermissionResponse)
async def set_permission_active(
    code: str,
    payload: PermissionActiveUpdate,
    actor: User = Depends(require_top_role(rate_limit_policy=ADMIN_POLICY)),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> PermissionResponse:
    permission = await service.set_active(actor, code, payload.is_active)
    return PermissionResponse.model_validate(permission)


@router.post(
    "/permissions/groups/{group}/order", response_model=list[PermissionResponse]
)
async def reorder_group(
    group: str,
    payload: GroupOrderUpdate,
    actor: User = Depends(require_top_role(rate_limit_policy=ADMIN_POLICY)),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> list[PermissionResponse]:
    permissions = await service.reorder_within_group(actor, group, payload.codes)
    return [PermissionResponse.model_validate(item) for item in permissions]


@router.delete("/permissions/{code}", response_model=PermissionDeleteResponse)
async def delete_permission(
    code: str,
    actor: User = Depends(require_top_role(rate_limit_policy=ADMIN_POLICY)),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> PermissionDeleteResponse:
    outcome = await service.delete_permission(actor, code)
    return PermissionDeleteResponse(
        code=outcome.code, deleted=outcome.deleted, deactivated=outcome.deactivated
    )


@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: uuid.UUID,
    _actor: User = Depends(require_permission("PERMISSIONS_MANAGE")),
    services: AccessServices = Depends(get_services),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> UserPermissionsResponse:
    overrides = await service.list_overrides(user_id)
    effective = await services.resolver.resolve(user_id)
    return UserPermissionsResponse(
        user_id=user_id,
        effective=sorted(effective),
        overrides=[OverrideResponse.model_validate(item) for item in overrides],
    )


@router.put(
    "/users/{user_id}/permissions/{code}", response_model=OverrideResponse
)
async def set_user_override(
    user_id: uuid.UUID,
    code: str,
    payload: OverrideUpsert,
    actor: User = Depends(
        require_permission("PERMISSIONS_MANAGE", rate_limit_policy=ADMIN_POLICY)
    ),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> OverrideResponse:
    override = await service.set_override(
        actor, user_id, code, payload.effect, payload.expires_at
    )
    return OverrideResponse.model_validate(override)


@router.delete(
    "/users/{user_id}/permissions/{code}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_user_override(
    user_id: uuid.UUID,
    code: str,
    actor: User = Depends(
        require_permission("PERMISSIONS_MANAGE", rate_limit_policy=ADMIN_POLICY)
    ),
    service: PermissionCatalogService = Depends(get_catalog_service),
) -> None:
    await service.remove_override(actor, user_id, code)
