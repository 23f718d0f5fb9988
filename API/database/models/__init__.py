"""
Database models package.
Export all models for easy importing.
"""

# Tenant (MUST be imported first - other models depend on it)
from .tenant import (
    Tenant,
    UserTenantRole,
    MembershipRole,
)

# Plan catalog
from .plan import (
    Plan,
    PlanFeature,
)

# Subscriptions and usage
from .subscription import (
    SubscriptionStatus,
    Subscription,
    SubscriptionFeature,
    SubscriptionUsage,
    LIVE_STATUSES,
    USABLE_STATUSES,
    TERMINAL_STATUSES,
)

# Invoices and payments
from .billing import (
    InvoiceStatus,
    PaymentStatus,
    ItemableType,
    Invoice,
    InvoiceItem,
    Payment,
)


__all__ = [
    # Tenant
    'Tenant',
    'UserTenantRole',
    'MembershipRole',

    # Plan
    'Plan',
    'PlanFeature',

    # Subscription
    'SubscriptionStatus',
    'Subscription',
    'SubscriptionFeature',
    'SubscriptionUsage',
    'LIVE_STATUSES',
    'USABLE_STATUSES',
    'TERMINAL_STATUSES',

    # Billing
    'InvoiceStatus',
    'PaymentStatus',
    'ItemableType',
    'Invoice',
    'InvoiceItem',
    'Payment',
]
