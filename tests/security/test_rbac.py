"""
Tests for the RBAC (Role-Based Access Control) module.
"""
import pytest
from unittest.mock import MagicMock

from mdrrmo_api.exceptions import ForbiddenError
from mdrrmo_api.security.rbac import (
    Role, Permission, ROLE_PERMISSIONS,
    get_user_role, get_user_permissions, has_permission, require_admin,
)


def _user(is_admin=False, is_superuser=False):
    user = MagicMock()
    user.id = 1
    user.is_admin = is_admin
    user.is_superuser = is_superuser
    return user


class TestRolePermissions:
    """Test role-to-permissions mapping."""

    def test_user_can_only_view(self):
        user_perms = ROLE_PERMISSIONS[Role.USER]
        assert Permission.VIEW_INVENTORY in user_perms
        assert Permission.MANAGE_INVENTORY not in user_perms
        assert Permission.IMPORT_INVENTORY not in user_perms

    def test_admin_manages_stock(self):
        admin_perms = ROLE_PERMISSIONS[Role.ADMIN]
        assert Permission.MANAGE_DEPLOYMENTS in admin_perms
        assert Permission.IMPORT_INVENTORY in admin_perms

    def test_superuser_has_all_permissions(self):
        assert ROLE_PERMISSIONS[Role.SUPERUSER] == set(Permission)


class TestGetUserRole:
    def test_superuser_wins(self):
        assert get_user_role(_user(is_admin=True, is_superuser=True)) == Role.SUPERUSER

    def test_admin(self):
        assert get_user_role(_user(is_admin=True)) == Role.ADMIN

    def test_regular_user(self):
        assert get_user_role(_user()) == Role.USER

    def test_permissions_follow_role(self):
        assert get_user_permissions(_user(is_admin=True)) == ROLE_PERMISSIONS[Role.ADMIN]
        assert has_permission(_user(), Permission.VIEW_NOTIFICATIONS)
        assert not has_permission(_user(), Permission.MANAGE_DEPLOYMENTS)


class TestRequireAdmin:
    def test_regular_user_is_refused(self):
        with pytest.raises(ForbiddenError) as exc_info:
            require_admin(_user())
        assert exc_info.value.status_code == 403

    @pytest.mark.parametrize("flags", [{"is_admin": True}, {"is_superuser": True}])
    def test_admins_pass(self, flags):
        require_admin(_user(**flags))
