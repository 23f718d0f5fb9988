"""
Database package for the campaign platform billing engine.

Usage:
    from database import db, get_db, init_db
    from database.models import Plan, Subscription, Invoice, Payment
"""

from .base import (
    Base, BaseModel, TenantBaseModel, TenantMixin, TimestampMixin,
    SoftDeleteMixin, TZDateTime, utc_now,
)
from .connection import (
    DatabaseConnection,
    db,
    get_db,
    init_db,
)

# Import all models to ensure they are registered with SQLAlchemy
from .models import *


__all__ = [
    # Base
    'Base',
    'BaseModel',
    'TenantBaseModel',
    'TenantMixin',
    'TimestampMixin',
    'SoftDeleteMixin',
    'TZDateTime',
    'utc_now',

    # Connection
    'DatabaseConnection',
    'db',
    'get_db',
    'init_db',
]
