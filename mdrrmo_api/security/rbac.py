"""
Role-Based Access Control (RBAC) Module

Staff can read inventory, annotate deployments and work the notification
inbox. Receiving, editing or deleting stock records, deploying and
recording returns are admin-only.
"""

from enum import Enum
from typing import Set
import logging

from mdrrmo_api.exceptions import ForbiddenError
from mdrrmo_api.models.user import User

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """User roles."""
    USER = "user"
    ADMIN = "admin"
    SUPERUSER = "superuser"


class Permission(str, Enum):
    """Fine-grained permissions."""
    VIEW_INVENTORY = "view_inventory"
    MANAGE_INVENTORY = "manage_inventory"
    MANAGE_DEPLOYMENTS = "manage_deployments"
    IMPORT_INVENTORY = "import_inventory"
    VIEW_NOTIFICATIONS = "view_notifications"


ROLE_PERMISSIONS: dict[Role, Set[Permission]] = {
    Role.USER: {
        Permission.VIEW_INVENTORY,
        Permission.VIEW_NOTIFICATIONS,
    },
    Role.ADMIN: {
        Permission.VIEW_INVENTORY,
        Permission.VIEW_NOTIFICATIONS,
        Permission.MANAGE_INVENTORY,
        Permission.MANAGE_DEPLOYMENTS,
        Permission.IMPORT_INVENTORY,
    },
    Role.SUPERUSER: set(Permission),  # All permissions
}


def get_user_role(user: User) -> Role:
    """Determine user's role from database flags."""
    if user.is_superuser:
        return Role.SUPERUSER
    if user.is_admin:
        return Role.ADMIN
    return Role.USER


def get_user_permissions(user: User) -> Set[Permission]:
    return ROLE_PERMISSIONS.get(get_user_role(user), set())


def has_permission(user: User, permission: Permission) -> bool:
    return permission in get_user_permissions(user)


def require_admin(current_user: User) -> None:
    """Raise 403 unless the user is an admin or superuser."""
    role = get_user_role(current_user)
    if role not in (Role.ADMIN, Role.SUPERUSER):
        logger.warning(
            f"Admin access denied for user {current_user.id}",
            extra={"user_id": current_user.id, "role": role.value}
        )
        raise ForbiddenError("Admin access required")
