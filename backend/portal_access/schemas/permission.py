import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class PermissionCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    group: str = Field(..., min_length=1, max_length=100)
    group_label: str | None = Field(default=None, max_length=255)
    description: str | None = None


class PermissionUpdate(BaseModel):
    code: str | None = Field(default=None, max_length=100)
    name: str | None = Field(default=None, max_length=255)
    group_label: str | None = Field(default=None, max_length=255)
    description: str | None = None


class PermissionActiveUpdate(BaseModel):
    is_active: bool


class GroupOrderUpdate(BaseModel):
    codes: list[str] = Field(..., min_length=1)


class PermissionResponse(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    description: str | None
    group: str
    group_label: str
    display_order: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CatalogStatsResponse(BaseModel):
    total: int
    active: int
    inactive: int
    group_count: int


class CatalogResponse(BaseModel):
    permissions: list[PermissionResponse]
    grouped: dict[str, list[PermissionResponse]]
    stats: CatalogStatsResponse


class PermissionDeleteResponse(BaseModel):
    code: str
    deleted: bool
    deactivated: bool


class OverrideUpsert(BaseModel):
    effect: Literal["grant", "revoke"]
    expires_at: datetime | None = None


class OverrideResponse(BaseModel):
    permission_code: str
    effect: str
    granted_by: uuid.UUID | None
    expires_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class UserPermissionsResponse(BaseModel):
    user_id: uuid.UUID
    effective: list[str]
    overrides: list[OverrideResponse]
