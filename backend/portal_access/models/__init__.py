from .base import Base
from .permission import Permission
from .user import User
from .user_permission_override import UserPermissionOverride

__all__ = [
    "Base",
    "Permission",
    "User",
    "UserPermissionOverride",
]
