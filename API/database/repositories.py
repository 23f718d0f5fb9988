"""
Typed repositories, one per aggregate the billing engine touches.

Repositories only read and stage writes on the session they were given.
They never commit; the calling service owns the transaction.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session

from .base import utc_now
from .models import (
    Tenant, UserTenantRole,
    Plan, PlanFeature,
    Subscription, SubscriptionFeature, SubscriptionUsage,
    Invoice, InvoiceItem, Payment,
    LIVE_STATUSES, USABLE_STATUSES,
)


class _Repository:
    model = None

    def __init__(self, db: Session):
        self.db = db

    def get(self, entity_id: int):
        return self.db.execute(
            select(self.model).where(self.model.id == entity_id)
        ).scalar_one_or_none()

    def get_for_update(self, entity_id: int):
        """Fetch and lock the row until the current transaction ends."""
        return self.db.execute(
            select(self.model)
            .where(self.model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def add(self, entity):
        self.db.add(entity)
        self.db.flush()
        return entity


# ==================== MEMBERSHIP ====================

class MembershipRepository(_Repository):
    model = UserTenantRole

    def get_role(self, user_id: int, tenant_id: int) -> Optional[str]:
        return self.db.execute(
            select(UserTenantRole.role).where(
                UserTenantRole.user_id == user_id,
                UserTenantRole.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()


# ==================== PLANS ====================

class PlanRepository(_Repository):
    model = Plan

    def list_plans(self, active_only: bool = True, public_only: bool = False) -> List[Plan]:
        stmt = select(Plan)
        if active_only:
            stmt = stmt.where(Plan.is_active == True)
        if public_only:
            stmt = stmt.where(Plan.is_public == True)
        return list(self.db.execute(stmt.order_by(Plan.price, Plan.id)).scalars())

    def features(self, plan_id: int) -> List[PlanFeature]:
        return list(self.db.execute(
            select(PlanFeature)
            .where(PlanFeature.plan_id == plan_id)
            .order_by(PlanFeature.display_order, PlanFeature.id)
        ).scalars())

    def get_feature(self, plan_id: int, feature_id: int) -> Optional[PlanFeature]:
        return self.db.execute(
            select(PlanFeature).where(
                PlanFeature.id == feature_id,
                PlanFeature.plan_id == plan_id,
            )
        ).scalar_one_or_none()


# ==================== SUBSCRIPTIONS ====================

class SubscriptionRepository(_Repository):
    model = Subscription

    def lock_tenant(self, tenant_id: int) -> Optional[Tenant]:
        """Serialize subscription creation per tenant."""
        return self.db.execute(
            select(Tenant).where(Tenant.id == tenant_id).with_for_update()
        ).scalar_one_or_none()

    def live_for_tenant(
        self, tenant_id: int, exclude_id: Optional[int] = None
    ) -> Optional[Subscription]:
        stmt = select(Subscription).where(
            Subscription.tenant_id == tenant_id,
            Subscription.status.in_(LIVE_STATUSES),
        )
        if exclude_id is not None:
            stmt = stmt.where(Subscription.id != exclude_id)
        return self.db.execute(stmt.order_by(Subscription.id.desc())).scalars().first()

    def usable_for_tenant(self, tenant_id: int) -> Optional[Subscription]:
        return self.db.execute(
            select(Subscription)
            .where(
                Subscription.tenant_id == tenant_id,
                Subscription.status.in_(USABLE_STATUSES),
            )
            .order_by(Subscription.id.desc())
        ).scalars().first()

    def list_by_tenant(self, tenant_id: int, status: Optional[str] = None) -> List[Subscription]:
        stmt = select(Subscription).where(Subscription.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Subscription.status == status)
        return list(self.db.execute(stmt.order_by(Subscription.created_at.desc(), Subscription.id.desc())).scalars())

    def features(self, subscription_id: int) -> List[SubscriptionFeature]:
        return list(self.db.execute(
            select(SubscriptionFeature)
            .where(SubscriptionFeature.subscription_id == subscription_id)
            .order_by(SubscriptionFeature.id)
        ).scalars())

    def add_features(self, features: Sequence[SubscriptionFeature]):
        self.db.add_all(features)
        self.db.flush()


# ==================== USAGE ====================

class UsageRepository(_Repository):
    model = SubscriptionUsage

    def get_for_period(
        self, subscription_id: int, feature_key: str, period_start: datetime
    ) -> Optional[SubscriptionUsage]:
        return self.db.execute(
            select(SubscriptionUsage)
            .where(
                SubscriptionUsage.subscription_id == subscription_id,
                SubscriptionUsage.feature_key == feature_key,
                SubscriptionUsage.period_start == period_start,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_for_period(self, subscription_id: int, period_start: datetime) -> List[SubscriptionUsage]:
        return list(self.db.execute(
            select(SubscriptionUsage)
            .where(
                SubscriptionUsage.subscription_id == subscription_id,
                SubscriptionUsage.period_start == period_start,
            )
            .order_by(SubscriptionUsage.feature_key)
            .execution_options(populate_existing=True)
        ).scalars())

    def latest_before(
        self, subscription_id: int, feature_key: str, period_start: datetime
    ) -> Optional[SubscriptionUsage]:
        """Counter of the most recent earlier period."""
        return self.db.execute(
            select(SubscriptionUsage)
            .where(
                SubscriptionUsage.subscription_id == subscription_id,
                SubscriptionUsage.feature_key == feature_key,
                SubscriptionUsage.period_start < period_start,
            )
            .order_by(SubscriptionUsage.period_start.desc())
        ).scalars().first()

    def history(self, subscription_id: int) -> List[SubscriptionUsage]:
        return list(self.db.execute(
            select(SubscriptionUsage)
            .where(SubscriptionUsage.subscription_id == subscription_id)
            .order_by(SubscriptionUsage.period_start, SubscriptionUsage.feature_key)
        ).scalars())

    def try_increment(self, usage_id: int, amount: int, metadata: Optional[dict] = None) -> bool:
        """
        Single conditional UPDATE. The limit check and the increment happen
        in one statement, so concurrent callers can never overshoot.
        Returns False (row untouched) when the increment would exceed the limit.
        """
        values = {
            "usage_count": SubscriptionUsage.usage_count + amount,
            "updated_at": utc_now(),
        }
        if metadata:
            values["extra"] = metadata
        result = self.db.execute(
            update(SubscriptionUsage)
            .where(
                SubscriptionUsage.id == usage_id,
                or_(
                    SubscriptionUsage.limit.is_(None),
                    SubscriptionUsage.usage_count + amount <= SubscriptionUsage.limit,
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# ==================== INVOICES & PAYMENTS ====================

class InvoiceRepository(_Repository):
    model = Invoice

    def list_by_tenant(
        self, tenant_id: int,
        status: Optional[str] = None,
        subscription_id: Optional[int] = None,
    ) -> List[Invoice]:
        stmt = select(Invoice).where(Invoice.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Invoice.status == status)
        if subscription_id is not None:
            stmt = stmt.where(Invoice.subscription_id == subscription_id)
        return list(self.db.execute(stmt.order_by(Invoice.created_at.desc(), Invoice.id.desc())).scalars())

    def items(self, invoice_id: int) -> List[InvoiceItem]:
        return list(self.db.execute(
            select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id)
        ).scalars())

    def add_items(self, items: Sequence[InvoiceItem]):
        self.db.add_all(items)
        self.db.flush()


class PaymentRepository(_Repository):
    model = Payment

    def list_by_tenant(
        self, tenant_id: int,
        status: Optional[str] = None,
        invoice_id: Optional[int] = None,
    ) -> List[Payment]:
        stmt = select(Payment).where(Payment.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Payment.status == status)
        if invoice_id is not None:
            stmt = stmt.where(Payment.invoice_id == invoice_id)
        return list(self.db.execute(stmt.order_by(Payment.created_at.desc(), Payment.id.desc())).scalars())
