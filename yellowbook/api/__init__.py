"""
API module for endpoint routes and authentication.

Exports:
    get_current_user: FastAPI dependency for authenticated endpoints
    require_admin: FastAPI dependency for admin-only endpoints
    create_access_token: Issue a session token for a stored user
"""

from yellowbook.api.auth import (
    create_access_token,
    get_current_user,
    require_admin,
)

__all__ = [
    "get_current_user",
    "require_admin",
    "create_access_token",
]
