"""
Role guards for admin-only routes.

Roles come from get_current_user, which reloads them from the database,
so a demoted admin loses access without waiting for token expiry.
"""

from typing import Iterable
from fastapi import Depends
from tenapay.app.models.enums import UserRole
from tenapay.app.core.dependencies import get_current_user
from tenapay.app.core.exceptions import InsufficientPermissionsError


def require_role(allowed_roles: Iterable[UserRole]):
    """
    Dependency factory.

    Usage:
        @router.get("/admin/overview")
        async def overview(admin: dict = Depends(require_role([UserRole.ADMIN]))):
            ...
    """
    allowed = {UserRole(role) for role in allowed_roles}

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        role = current_user.get("role")
        if role not in {r.value for r in allowed}:
            raise InsufficientPermissionsError(
                "Access denied",
                details={"required": sorted(r.value for r in allowed), "role": role}
            )
        return current_user

    return role_checker


require_admin = require_role([UserRole.ADMIN])
