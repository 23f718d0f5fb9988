"""
Usage metering: per-period counters with hard quotas.

Tracked features and the plan ceiling each one is limited by:
- messages_sent: max_messages_per_month
- whatsapp_instances: max_whatsapp_instances
- api_calls, contacts, campaigns: unlimited

Usage in any service:
    from services.usage import UsageService

    UsageService(db).track_usage(tenant_id, "messages_sent")
    # raises UsageLimitExceededError when the quota is used up
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.soft_delete import include_deleted
from core.exceptions import BadRequestError, NotFoundError, PreconditionFailedError, UsageLimitExceededError
from database.models import Plan, Subscription, SubscriptionUsage
from database.repositories import SubscriptionRepository, UsageRepository
from .base import BillingServiceBase
from .notifier import Notifier

logger = logging.getLogger(__name__)


class FeatureKey(str, Enum):
    MESSAGES_SENT = "messages_sent"
    API_CALLS = "api_calls"
    WHATSAPP_INSTANCES = "whatsapp_instances"
    CONTACTS = "contacts"
    CAMPAIGNS = "campaigns"


TRACKED_FEATURES = tuple(f.value for f in FeatureKey)

# Feature -> Plan column holding its ceiling. Missing = unlimited
_PLAN_CEILINGS = {
    FeatureKey.MESSAGES_SENT.value: "max_messages_per_month",
    FeatureKey.WHATSAPP_INSTANCES.value: "max_whatsapp_instances",
}

# Marks a counter whose limit is taken from the previous period or the plan
_SNAPSHOT = object()


def plan_limit(plan: Plan, feature_key: str) -> Optional[int]:
    """Ceiling the plan puts on a feature. None = unlimited."""
    field = _PLAN_CEILINGS.get(feature_key)
    if field is None:
        return None
    return getattr(plan, field, None)


def validate_feature_key(feature_key: str) -> str:
    if feature_key not in TRACKED_FEATURES:
        raise BadRequestError(
            f"Unknown feature: {feature_key}",
            context={"feature_key": feature_key, "allowed": list(TRACKED_FEATURES)},
        )
    return feature_key


def usage_to_dict(usage: SubscriptionUsage) -> Dict[str, Any]:
    return {
        "id": usage.id,
        "subscription_id": usage.subscription_id,
        "feature_key": usage.feature_key,
        "usage_count": usage.usage_count,
        "limit": usage.limit,
        "remaining": usage.remaining,
        "period_start": usage.period_start,
        "period_end": usage.period_end,
    }


class UsageService(BillingServiceBase):

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        super().__init__(db, notifier)
        self.subscriptions = SubscriptionRepository(db)
        self.usage = UsageRepository(db)

    # ==================== COUNTERS ====================

    def initialize_usage(
        self,
        subscription_id: int,
        feature_key: str,
        limit: Optional[int] = None,
    ) -> SubscriptionUsage:
        """
        Current-period counter for a feature, created on first use.
        Idempotent: concurrent callers end up with the same row.
        """
        with self._atomic():
            subscription = self.subscriptions.get(subscription_id)
            if not subscription:
                raise NotFoundError("Subscription not found", context={"subscription_id": subscription_id})
            usage = self._current_counter(subscription, feature_key, limit)
        return usage

    def seed_period(self, subscription: Subscription, plan: Plan) -> List[SubscriptionUsage]:
        """
        One zeroed counter per tracked feature for the subscription's current
        period. Limits carry over from the previous period; the plan ceilings
        apply only to a subscription's first period, so catalog edits never
        reach existing subscriptions.
        """
        return [
            self._current_counter(subscription, key, self._snapshot_limit(subscription, key, plan))
            for key in TRACKED_FEATURES
        ]

    def track_usage(
        self,
        tenant_id: int,
        feature_key: str,
        increment_by: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SubscriptionUsage:
        """
        Add increment_by to the tenant's current counter.

        Raises:
            PreconditionFailedError: no active or trial subscription
            UsageLimitExceededError: increment would pass the limit (counter unchanged)
        """
        validate_feature_key(feature_key)
        if increment_by < 1:
            raise BadRequestError("increment_by must be at least 1", context={"increment_by": increment_by})

        with self._atomic():
            subscription = self._require_usable(tenant_id)
            usage = self._current_counter(subscription, feature_key)
            if not self.usage.try_increment(usage.id, increment_by, metadata):
                self.db.refresh(usage)
                logger.info(
                    f"[tenant {tenant_id}] {feature_key} limit reached: "
                    f"{usage.usage_count}/{usage.limit} (+{increment_by} refused)"
                )
                raise UsageLimitExceededError(feature_key, usage.usage_count, usage.limit, increment_by)
            self.db.refresh(usage)
        return usage

    # ==================== QUERIES ====================

    def check_usage_limit(self, tenant_id: int, feature_key: str) -> Dict[str, Any]:
        """Whether one more unit may be consumed right now."""
        validate_feature_key(feature_key)
        subscription = self.subscriptions.usable_for_tenant(tenant_id)
        if not subscription:
            return {"allowed": False, "current": 0, "limit": 0, "remaining": 0}

        usage = self.usage.get_for_period(subscription.id, feature_key, subscription.current_period_start)
        if not usage:
            return {"allowed": True, "current": 0, "limit": None, "remaining": None}

        allowed = usage.limit is None or usage.usage_count < usage.limit
        return {
            "allowed": allowed,
            "current": usage.usage_count,
            "limit": usage.limit,
            "remaining": usage.remaining,
        }

    def get_usage_stats(self, tenant_id: int) -> List[Dict[str, Any]]:
        """All current-period counters of the tenant's usable subscription."""
        subscription = self.subscriptions.usable_for_tenant(tenant_id)
        if not subscription:
            return []
        return [
            usage_to_dict(u)
            for u in self.usage.list_for_period(subscription.id, subscription.current_period_start)
        ]

    def get_usage_history(self, tenant_id: int, subscription_id: int) -> List[Dict[str, Any]]:
        """Every counter the subscription ever had, oldest period first."""
        subscription = self.subscriptions.get(subscription_id)
        if not subscription or subscription.tenant_id != tenant_id:
            raise NotFoundError("Subscription not found", context={"subscription_id": subscription_id})
        return [usage_to_dict(u) for u in self.usage.history(subscription_id)]

    # ==================== INTERNAL ====================

    def _plan_of(self, subscription: Subscription) -> Optional[Plan]:
        # A retired plan still defines the ceilings of its subscriptions
        with include_deleted():
            return subscription.plan

    def _snapshot_limit(
        self, subscription: Subscription, feature_key: str, plan: Optional[Plan] = None
    ) -> Optional[int]:
        previous = self.usage.latest_before(
            subscription.id, feature_key, subscription.current_period_start
        )
        if previous is not None:
            return previous.limit
        return plan_limit(plan or self._plan_of(subscription), feature_key)

    def _require_usable(self, tenant_id: int) -> Subscription:
        subscription = self.subscriptions.usable_for_tenant(tenant_id)
        if not subscription:
            raise PreconditionFailedError(
                "No active subscription found",
                context={"tenant_id": tenant_id},
            )
        return subscription

    def _current_counter(
        self, subscription: Subscription, feature_key: str, limit: Any = _SNAPSHOT
    ) -> SubscriptionUsage:
        validate_feature_key(feature_key)
        existing = self.usage.get_for_period(subscription.id, feature_key, subscription.current_period_start)
        if existing:
            return existing
        if limit is _SNAPSHOT:
            limit = self._snapshot_limit(subscription, feature_key)

        usage = SubscriptionUsage(
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            feature_key=feature_key,
            usage_count=0,
            limit=limit,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            extra={},
        )
        try:
            with self.db.begin_nested():
                self.db.add(usage)
        except IntegrityError:
            # Another transaction created it first
            existing = self.usage.get_for_period(
                subscription.id, feature_key, subscription.current_period_start
            )
            if existing is None:
                raise
            return existing
        return usage
