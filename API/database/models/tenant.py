"""
Tenant (workspace) model and tenant membership.

Tenants and memberships are managed by the tenants service; the billing
engine only reads them (membership role lookup for access checks).
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Boolean, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from ..base import BaseModel, SoftDeleteMixin, TenantMixin


class MembershipRole(str, PyEnum):
    """Roles a user can hold inside a tenant."""
    owner = "owner"
    admin = "admin"
    member = "member"
    viewer = "viewer"


class Tenant(BaseModel):
    """
    Tenant model - a billed organization/workspace.

    Subscriptions, usage counters, invoices and payments all carry
    tenant_id (see TenantMixin).
    """

    __tablename__ = 'tenants'

    name = Column(String(300), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    memberships = relationship("UserTenantRole", back_populates="tenant", lazy="dynamic")

    __table_args__ = (
        Index('ix_tenants_is_active', 'is_active'),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}')>"


class UserTenantRole(BaseModel, TenantMixin, SoftDeleteMixin):
    """A user's role inside one tenant. Users live in the auth service."""

    __tablename__ = 'user_tenant_roles'

    user_id = Column(Integer, nullable=False, index=True)
    role = Column(String(20), nullable=False)

    tenant = relationship("Tenant", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('user_id', 'tenant_id', name='uq_user_tenant_role'),
    )
