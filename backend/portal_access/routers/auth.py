from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..bootstrap import AccessServices
from ..dependencies import (
    get_client_ip,
    get_current_user,
    get_db,
    get_services,
    rate_limit,
)
from ..models.user import User
from ..ratelimit import AUTH_POLICY
from ..schemas.auth import LoginRequest, MyPermissionsResponse, TokenResponse
from ..use_cases.auth.login_user import login_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=TokenResponse,
    dependencies=[Depends(rate_limit(AUTH_POLICY))],
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    services: AccessServices = Depends(get_services),
    client_ip: str = Depends(get_client_ip),
) -> TokenResponse:
    result = await login_user(
        db, services, payload.email, payload.password, client_ip=client_ip
    )
    return TokenResponse(
        access_token=result.access_token,
        attempts_remaining=result.attempts_remaining,
    )


@router.get("/me/permissions", response_model=MyPermissionsResponse)
async def my_permissions(
    user: User = Depends(get_current_user),
    services: AccessServices = Depends(get_services),
) -> MyPermissionsResponse:
    permissions = await services.resolver.resolve(user.id)
    return MyPermissionsResponse(role=user.role, permissions=sorted(permissions))
