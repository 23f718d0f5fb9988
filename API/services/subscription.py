"""
Subscription service: the subscription state machine.

    create ──> active   (free plan)
           ──> trial    (paid plan with trial days)
           ──> pending  (paid plan, waits for payment)
    pending ──complete_payment──> active
    renew   ──> active, next period, fresh usage counters
    cancel  ──> cancelled now, or flag for period end

cancelled and expired are terminal; only an administrative update
moves a subscription out of them.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.billing_period import BillingCycle, period_bounds, period_end
from core.exceptions import BadRequestError, ConflictError, NotFoundError
from core.money import to_money
from core.soft_delete import include_deleted
from database.base import utc_now
from database.models import (
    Plan, Subscription, SubscriptionFeature,
    SubscriptionStatus, LIVE_STATUSES, TERMINAL_STATUSES,
)
from database.repositories import PlanRepository, SubscriptionRepository
from .base import BillingServiceBase
from .billing import BillingService
from .notifier import EventType, Notifier
from .usage import UsageService

logger = logging.getLogger(__name__)

_STATUSES = tuple(s.value for s in SubscriptionStatus)


class SubscriptionService(BillingServiceBase):

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        super().__init__(db, notifier)
        self.plans = PlanRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.billing = BillingService(db, self.notifier)
        self.usage = UsageService(db, self.notifier)

    # ==================== QUERIES ====================

    def get_subscription(self, subscription_id: int) -> Subscription:
        subscription = self.subscriptions.get(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found", context={"subscription_id": subscription_id})
        return subscription

    def get_features(self, subscription_id: int) -> List[SubscriptionFeature]:
        return self.subscriptions.features(subscription_id)

    def list_subscriptions(self, tenant_id: int, status: Optional[str] = None) -> List[Subscription]:
        if status:
            self._validate_status(status)
        return self.subscriptions.list_by_tenant(tenant_id, status=status)

    def get_active_subscription(self, tenant_id: int) -> Optional[Subscription]:
        """The tenant's current (trial, active or pending) subscription, if any."""
        return self.subscriptions.live_for_tenant(tenant_id)

    # ==================== WORKFLOW ====================

    def create_subscription(
        self,
        tenant_id: int,
        plan_id: int,
        start_date: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Subscribe a tenant to a plan.

        Returns {"subscription", "invoice", "payment", "is_free"}; invoice and
        payment are set only when the subscription starts pending.
        """
        start = start_date or utc_now()
        if start.tzinfo is None:
            raise BadRequestError("start_date must be timezone-aware")
        # Periods are computed in UTC, the zone they are stored in
        start = start.astimezone(timezone.utc)

        with self._atomic():
            plan = self.plans.get(plan_id)
            if not plan:
                raise NotFoundError("Plan not found", context={"plan_id": plan_id})
            if not plan.is_active:
                raise BadRequestError("Plan is not active", context={"plan_id": plan_id})
            cycle = BillingCycle.parse(plan.billing_cycle)

            if not self.subscriptions.lock_tenant(tenant_id):
                raise NotFoundError("Tenant not found", context={"tenant_id": tenant_id})
            current = self.subscriptions.live_for_tenant(tenant_id)
            if current:
                raise ConflictError(
                    "Tenant already has a live subscription",
                    context={"subscription_id": current.id, "status": current.status},
                )

            period_start, period_finish = period_bounds(start, cycle, 0)
            price = to_money(plan.price)
            is_free = price == 0
            trial_days = plan.trial_days or 0

            if is_free:
                status = SubscriptionStatus.active.value
            elif trial_days > 0:
                status = SubscriptionStatus.trial.value
            else:
                status = SubscriptionStatus.pending.value

            subscription = self.subscriptions.add(Subscription(
                tenant_id=tenant_id,
                plan_id=plan.id,
                status=status,
                billing_anchor=period_start,
                period_index=0,
                current_period_start=period_start,
                current_period_end=period_finish,
                trial_start=start if status == SubscriptionStatus.trial.value else None,
                trial_end=start + timedelta(days=trial_days) if status == SubscriptionStatus.trial.value else None,
                price=price,
                currency=plan.currency,
                cancel_at_period_end=False,
                extra=metadata or {},
            ))

            self.subscriptions.add_features([
                SubscriptionFeature(
                    tenant_id=tenant_id,
                    subscription_id=subscription.id,
                    plan_feature_id=feature.id,
                    feature_key=feature.feature_key,
                    feature_value=feature.feature_value,
                    is_enabled=feature.is_enabled,
                )
                for feature in self.plans.features(plan.id)
            ])
            self.usage.seed_period(subscription, plan)

            self._emit(EventType.subscription_created, tenant_id, dict(
                subscription.to_dict(), plan_id=plan.id, is_free=is_free,
            ))

            invoice = payment = None
            if status == SubscriptionStatus.pending.value:
                invoice, payment = self.billing.create_plan_charge(subscription, plan)

        logger.info(f"[tenant {tenant_id}] Subscription {subscription.id} created ({status}, plan {plan.name})")
        return {"subscription": subscription, "invoice": invoice, "payment": payment, "is_free": is_free}

    def renew_subscription(self, subscription_id: int) -> Dict[str, Any]:
        """
        Move to the next billing period. The new period starts where the
        previous one ended; its end is computed from the billing anchor.
        """
        with self._atomic():
            subscription = self._lock(subscription_id)
            if subscription.status in TERMINAL_STATUSES:
                raise BadRequestError(
                    f"Cannot renew a {subscription.status} subscription",
                    context={"subscription_id": subscription_id, "status": subscription.status},
                )
            self._ensure_no_other_live(subscription)

            plan = self._plan_of(subscription)
            cycle = BillingCycle.parse(plan.billing_cycle)
            index = subscription.period_index + 1
            new_start = subscription.current_period_end
            _, new_end = period_bounds(subscription.billing_anchor, cycle, index)
            if new_end <= new_start:
                new_end = period_end(new_start, cycle)

            subscription.period_index = index
            subscription.current_period_start = new_start
            subscription.current_period_end = new_end
            subscription.status = SubscriptionStatus.active.value
            subscription.cancel_at_period_end = False
            self.db.flush()

            self.usage.seed_period(subscription, plan)

            is_free = to_money(subscription.price) == 0
            self._emit(EventType.subscription_renewed, subscription.tenant_id, dict(
                subscription.to_dict(), is_free=is_free,
            ))

            invoice = payment = None
            if not is_free:
                invoice, payment = self.billing.create_plan_charge(subscription, plan, renewal=True)

        logger.info(f"[tenant {subscription.tenant_id}] Subscription {subscription.id} renewed (period {index})")
        return {"subscription": subscription, "invoice": invoice, "payment": payment, "is_free": is_free}

    def cancel_subscription(self, subscription_id: int, cancel_at_period_end: bool = True) -> Subscription:
        with self._atomic():
            subscription = self._lock(subscription_id)
            if subscription.status in TERMINAL_STATUSES:
                raise BadRequestError(
                    f"Subscription is already {subscription.status}",
                    context={"subscription_id": subscription_id},
                )
            subscription.cancel_at_period_end = cancel_at_period_end
            if not cancel_at_period_end:
                subscription.status = SubscriptionStatus.cancelled.value
                subscription.cancelled_at = utc_now()
            self.db.flush()
            self._emit(EventType.subscription_cancelled, subscription.tenant_id, dict(
                subscription.to_dict(), cancel_at_period_end=cancel_at_period_end,
            ))
        return subscription

    def update_subscription(
        self,
        subscription_id: int,
        status: Optional[str] = None,
        cancel_at_period_end: Optional[bool] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """Administrative changes. Status may be any value of the state set."""
        if status is not None:
            self._validate_status(status)

        with self._atomic():
            subscription = self._lock(subscription_id)
            if status is not None and status != subscription.status:
                if status in LIVE_STATUSES:
                    self._ensure_no_other_live(subscription)
                subscription.status = status
                if status == SubscriptionStatus.cancelled.value:
                    subscription.cancelled_at = utc_now()
            if cancel_at_period_end is not None:
                subscription.cancel_at_period_end = cancel_at_period_end
            if metadata is not None:
                subscription.extra = dict(subscription.extra or {}, **metadata)
            self.db.flush()
            self._emit(EventType.subscription_updated, subscription.tenant_id, subscription.to_dict())
        return subscription

    # ==================== INTERNAL ====================

    def _lock(self, subscription_id: int) -> Subscription:
        subscription = self.subscriptions.get_for_update(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found", context={"subscription_id": subscription_id})
        return subscription

    def _plan_of(self, subscription: Subscription) -> Plan:
        # Retired plans keep serving the subscriptions that reference them
        with include_deleted():
            plan = self.plans.get(subscription.plan_id)
        if not plan:
            raise NotFoundError("Plan not found", context={"plan_id": subscription.plan_id})
        return plan

    def _ensure_no_other_live(self, subscription: Subscription):
        other = self.subscriptions.live_for_tenant(subscription.tenant_id, exclude_id=subscription.id)
        if other:
            raise ConflictError(
                "Tenant already has a live subscription",
                context={"subscription_id": other.id, "status": other.status},
            )

    def _validate_status(self, status: str):
        if status not in _STATUSES:
            raise BadRequestError(
                f"Unknown subscription status: {status}",
                context={"allowed": list(_STATUSES)},
            )
