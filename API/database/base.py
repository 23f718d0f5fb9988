"""
Base model class and common mixins for all database models.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, DateTime, ForeignKey
from sqlalchemy.orm import declarative_base, declared_attr
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TZDateTime(TypeDecorator):
    """
    Timezone-aware DateTime.

    Values are stored in UTC and always come back aware, also on
    backends without native timezone support (SQLite).
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime is not allowed, attach a timezone")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at = Column(TZDateTime, default=utc_now, nullable=False)
    updated_at = Column(TZDateTime, default=utc_now, onupdate=utc_now, nullable=False)


class SoftDeleteMixin:
    """
    Tombstone column for soft delete.

    Rows with deleted_at set are excluded from every ORM read
    (see core.soft_delete).
    """

    deleted_at = Column(TZDateTime, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class TenantMixin:
    """
    Mixin that adds tenant_id to any model.
    All tenant-scoped models MUST use this mixin.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            Integer,
            ForeignKey('tenants.id', ondelete='CASCADE'),
            nullable=False,
            index=True
        )


class BaseModel(Base, TimestampMixin):
    """Abstract base model for NON-tenant models (Tenant, Plan)."""

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    def to_dict(self):
        """Convert model to dictionary."""
        return {attr.key: getattr(self, attr.key) for attr in self.__mapper__.column_attrs}

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"


class TenantBaseModel(Base, TimestampMixin, TenantMixin):
    """
    Abstract base model for ALL tenant-scoped models.

    Includes:
    - id (PK)
    - tenant_id (FK -> tenants.id) with index
    - created_at, updated_at timestamps
    """

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    def to_dict(self):
        """Convert model to dictionary."""
        return {attr.key: getattr(self, attr.key) for attr in self.__mapper__.column_attrs}

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id}, tenant_id={self.tenant_id})>"
