# Security module
from mdrrmo_api.security.rate_limiter import LoginRateLimiter, close_login_rate_limiter, get_login_rate_limiter
from mdrrmo_api.security.rbac import require_admin, has_permission, Permission, Role

__all__ = [
    "LoginRateLimiter",
    "close_login_rate_limiter",
    "get_login_rate_limiter",
    "require_admin",
    "has_permission",
    "Permission",
    "Role",
]
