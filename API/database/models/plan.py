"""
Plan catalog models.

A plan is a priced offering with quota ceilings and a billing cycle.
Subscriptions snapshot price, currency and features at creation, so
editing a plan never changes what an existing subscription is billed.
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, Text, Numeric,
    ForeignKey, JSON, Index, CheckConstraint
)
from sqlalchemy.orm import relationship

from ..base import BaseModel, SoftDeleteMixin


class Plan(BaseModel, SoftDeleteMixin):
    """Subscription plan."""

    __tablename__ = 'plans'

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    # Pricing
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='USD', nullable=False)
    billing_cycle = Column(String(20), default='monthly', nullable=False)
    trial_days = Column(Integer, default=0, nullable=False)

    # Quota ceilings (NULL = unlimited)
    max_users = Column(Integer, nullable=True)
    max_whatsapp_instances = Column(Integer, nullable=True)
    max_messages_per_month = Column(Integer, nullable=True)

    # Visibility
    is_active = Column(Boolean, default=True, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)

    extra = Column('metadata', JSON, default=dict, nullable=False)

    features = relationship(
        "PlanFeature",
        back_populates="plan",
        order_by="PlanFeature.display_order",
    )

    __table_args__ = (
        Index('ix_plans_is_active', 'is_active'),
        CheckConstraint('price >= 0', name='ck_plan_price_non_negative'),
        CheckConstraint('trial_days >= 0', name='ck_plan_trial_days_non_negative'),
    )

    def __repr__(self):
        return f"<Plan(id={self.id}, name='{self.name}', price={self.price} {self.currency})>"

    @property
    def is_free(self) -> bool:
        return self.price == 0


class PlanFeature(BaseModel, SoftDeleteMixin):
    """Entitlement attached to a plan, e.g. api_access=true or contacts=5000."""

    __tablename__ = 'plan_features'

    plan_id = Column(Integer, ForeignKey('plans.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    feature_key = Column(String(100), nullable=False)
    feature_value = Column(String(255), nullable=True)
    is_enabled = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)

    plan = relationship("Plan", back_populates="features")
