"""Authentication and authorization utilities."""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header

from esign_compliance.models.tenant import TENANT_ADMIN_ROLES, TenantRole
from esign_compliance.utils.errors import ForbiddenError, UnauthorizedError


@dataclass
class CurrentUser:
    """Represents the currently authenticated tenant user."""

    id: str
    tenant_id: str
    role: TenantRole = TenantRole.MEMBER
    email: Optional[str] = None

    @property
    def is_tenant_admin(self) -> bool:
        return self.role in TENANT_ADMIN_ROLES

    def check_tenant(self, tenant_id: str) -> None:
        """Raise ForbiddenError unless the user belongs to `tenant_id`."""
        if tenant_id != self.tenant_id:
            raise ForbiddenError("Resource belongs to another tenant")


def get_current_user(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-ID")] = None,
    x_tenant_id: Annotated[Optional[str], Header(alias="X-Tenant-ID")] = None,
    x_user_role: Annotated[Optional[str], Header(alias="X-User-Role")] = None,
    x_user_email: Annotated[Optional[str], Header(alias="X-User-Email")] = None,
) -> CurrentUser:
    """
    Get current user from request headers.

    Session verification lives in the upstream gateway; by the time a request
    reaches this service the identity headers are trusted.
    """
    if not x_user_id or not x_tenant_id:
        raise UnauthorizedError()

    role = TenantRole.MEMBER
    if x_user_role:
        try:
            role = TenantRole(x_user_role.upper())
        except ValueError:
            pass

    return CurrentUser(
        id=x_user_id,
        tenant_id=x_tenant_id,
        role=role,
        email=x_user_email,
    )


def require_tenant_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Dependency that only admits OWNER, ADMIN and SUPER_ADMIN members."""
    if not current_user.is_tenant_admin:
        raise ForbiddenError("Tenant administrator role required")
    return current_user
