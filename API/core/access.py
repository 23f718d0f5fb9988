"""
Tenant access guard.

Every tenant-scoped entry point calls authorize() with the roles it needs
before reading or writing anything.

Usage:
    guard = TenantAccessGuard(db)
    guard.authorize(user_id, tenant_id, MANAGE_ROLES)
"""

from typing import Iterable

from sqlalchemy.orm import Session

from database.models import MembershipRole
from database.repositories import MembershipRepository
from .exceptions import ForbiddenError


OWNER = MembershipRole.owner.value
ADMIN = MembershipRole.admin.value
MEMBER = MembershipRole.member.value
VIEWER = MembershipRole.viewer.value

# Billing changes: subscribe, renew, cancel, settle and refund payments
MANAGE_ROLES = (OWNER, ADMIN)
# Reads and usage tracking
READ_ROLES = (OWNER, ADMIN, MEMBER)
ALL_ROLES = (OWNER, ADMIN, MEMBER, VIEWER)


class TenantAccessGuard:

    def __init__(self, db: Session):
        self.memberships = MembershipRepository(db)

    def authorize(self, user_id: int, tenant_id: int, required_roles: Iterable[str]) -> str:
        """
        Role of the user in the tenant.

        Raises ForbiddenError when the user has no membership (or it was
        removed) or the role is not one of required_roles.
        """
        role = self.memberships.get_role(user_id, tenant_id)
        if role is None:
            raise ForbiddenError(
                "You do not have access to this tenant",
                context={"tenant_id": tenant_id},
            )
        allowed = [getattr(r, "value", r) for r in required_roles]
        if role not in allowed:
            raise ForbiddenError(
                "Insufficient role for this operation",
                context={"tenant_id": tenant_id, "role": role, "required_roles": allowed},
            )
        return role


def authorize(db: Session, user_id: int, tenant_id: int, required_roles: Iterable[str]) -> str:
    return TenantAccessGuard(db).authorize(user_id, tenant_id, required_roles)
