"""
Subscription models: the subscription itself, its feature snapshot and
its per-period usage counters.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Boolean, Numeric,
    ForeignKey, JSON, Index, UniqueConstraint, CheckConstraint, text
)
from sqlalchemy.orm import relationship

from ..base import TenantBaseModel, SoftDeleteMixin, TZDateTime


class SubscriptionStatus(str, PyEnum):
    """Subscription status."""
    trial = "trial"
    pending = "pending"
    active = "active"
    past_due = "past_due"
    cancelled = "cancelled"
    expired = "expired"


# At most one subscription per tenant may be in one of these states
LIVE_STATUSES = (
    SubscriptionStatus.trial.value,
    SubscriptionStatus.active.value,
    SubscriptionStatus.pending.value,
)

# States in which the tenant may consume metered features
USABLE_STATUSES = (
    SubscriptionStatus.trial.value,
    SubscriptionStatus.active.value,
)

TERMINAL_STATUSES = (
    SubscriptionStatus.cancelled.value,
    SubscriptionStatus.expired.value,
)

_LIVE_PREDICATE = text(
    "status IN ('trial', 'active', 'pending') AND deleted_at IS NULL"
)


class Subscription(TenantBaseModel, SoftDeleteMixin):
    """
    A tenant's binding to a plan for the current billing period.

    Periods are counted from billing_anchor: period N spans
    [anchor + N cycles, anchor + N+1 cycles). period_index is N.
    """

    __tablename__ = 'subscriptions'

    plan_id = Column(Integer, ForeignKey('plans.id', ondelete='RESTRICT'), nullable=False, index=True)
    status = Column(String(20), default=SubscriptionStatus.pending.value, nullable=False)

    # Billing period
    billing_anchor = Column(TZDateTime, nullable=False)
    period_index = Column(Integer, default=0, nullable=False)
    current_period_start = Column(TZDateTime, nullable=False)
    current_period_end = Column(TZDateTime, nullable=False)

    # Trial
    trial_start = Column(TZDateTime, nullable=True)
    trial_end = Column(TZDateTime, nullable=True)

    # Cancellation
    cancelled_at = Column(TZDateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    # Price snapshot taken from the plan at creation
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='USD', nullable=False)

    extra = Column('metadata', JSON, default=dict, nullable=False)

    plan = relationship("Plan")
    features = relationship(
        "SubscriptionFeature",
        back_populates="subscription",
        order_by="SubscriptionFeature.id",
    )

    __table_args__ = (
        Index('ix_subscriptions_tenant_status', 'tenant_id', 'status'),
        Index(
            'uq_subscriptions_tenant_live', 'tenant_id',
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
        CheckConstraint(
            'current_period_end > current_period_start',
            name='ck_subscription_period_order',
        ),
    )

class SubscriptionFeature(TenantBaseModel, SoftDeleteMixin):
    """Copy of a PlanFeature taken when the subscription was created."""

    __tablename__ = 'subscription_features'

    subscription_id = Column(
        Integer, ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False, index=True
    )
    plan_feature_id = Column(
        Integer, ForeignKey('plan_features.id', ondelete='SET NULL'), nullable=True
    )
    feature_key = Column(String(100), nullable=False)
    feature_value = Column(String(255), nullable=True)
    is_enabled = Column(Boolean, default=True, nullable=False)

    subscription = relationship("Subscription", back_populates="features")


class SubscriptionUsage(TenantBaseModel):
    """
    Usage counter for one feature in one billing period.

    A new row is created for every period; rows of past periods are
    kept as history and never written again.
    """

    __tablename__ = 'subscription_usages'

    subscription_id = Column(
        Integer, ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False, index=True
    )
    feature_key = Column(String(50), nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    limit = Column(Integer, nullable=True)  # NULL = unlimited
    period_start = Column(TZDateTime, nullable=False)
    period_end = Column(TZDateTime, nullable=False)

    extra = Column('metadata', JSON, default=dict, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            'subscription_id', 'feature_key', 'period_start',
            name='uq_usage_subscription_feature_period',
        ),
        CheckConstraint('usage_count >= 0', name='ck_usage_count_non_negative'),
    )

    @property
    def remaining(self):
        if self.limit is None:
            return None
        return max(0, self.limit - self.usage_count)
