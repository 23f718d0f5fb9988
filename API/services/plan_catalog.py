"""
Plan catalog service: read plans, and platform-admin maintenance of
plans and their features.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.billing_period import BillingCycle
from core.exceptions import BadRequestError, NotFoundError
from core.money import to_money
from core.soft_delete import soft_delete
from core.subscription_plans import get_default_plans
from database.models import Plan, PlanFeature
from database.repositories import PlanRepository
from .base import BillingServiceBase
from .notifier import Notifier

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_LIMIT_FIELDS = ("max_users", "max_whatsapp_instances", "max_messages_per_month")
_PLAN_FIELDS = (
    "name", "description", "price", "currency", "billing_cycle", "trial_days",
    "max_users", "max_whatsapp_instances", "max_messages_per_month",
    "is_active", "is_public", "metadata",
)
_FEATURE_FIELDS = ("name", "description", "feature_key", "feature_value", "is_enabled", "display_order")


class PlanCatalogService(BillingServiceBase):

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        super().__init__(db, notifier)
        self.plans = PlanRepository(db)

    # ==================== QUERIES ====================

    def list_plans(self, active_only: bool = True, public_only: bool = False) -> List[Plan]:
        return self.plans.list_plans(active_only=active_only, public_only=public_only)

    def get_plan(self, plan_id: int) -> Plan:
        plan = self.plans.get(plan_id)
        if not plan:
            raise NotFoundError("Plan not found", context={"plan_id": plan_id})
        return plan

    def get_features(self, plan_id: int) -> List[PlanFeature]:
        self.get_plan(plan_id)
        return self.plans.features(plan_id)

    # ==================== PLAN ADMIN ====================

    def create_plan(self, data: Dict[str, Any], features: Optional[List[Dict[str, Any]]] = None) -> Plan:
        values = self._clean_plan_values(data, partial=False)
        with self._atomic():
            plan = self.plans.add(Plan(**values))
            for i, feature in enumerate(features or []):
                self._add_feature(plan, feature, default_order=i)
        logger.info(f"Plan created: {plan.name} (id={plan.id})")
        return plan

    def update_plan(self, plan_id: int, changes: Dict[str, Any]) -> Plan:
        values = self._clean_plan_values(changes, partial=True)
        with self._atomic():
            plan = self.get_plan(plan_id)
            for key, value in values.items():
                setattr(plan, key, value)
            self.db.flush()
        return plan

    def delete_plan(self, plan_id: int) -> Plan:
        """Tombstone the plan. Existing subscriptions keep their snapshot."""
        with self._atomic():
            plan = self.get_plan(plan_id)
            plan.is_active = False
            soft_delete(plan)
            self.db.flush()
        logger.info(f"Plan deleted: {plan.name} (id={plan.id})")
        return plan

    # ==================== FEATURES ====================

    def add_feature(self, plan_id: int, data: Dict[str, Any]) -> PlanFeature:
        with self._atomic():
            plan = self.get_plan(plan_id)
            feature = self._add_feature(plan, data, default_order=len(self.plans.features(plan_id)))
        return feature

    def update_feature(self, plan_id: int, feature_id: int, changes: Dict[str, Any]) -> PlanFeature:
        with self._atomic():
            feature = self._get_feature(plan_id, feature_id)
            for key in _FEATURE_FIELDS:
                if key in changes and changes[key] is not None:
                    setattr(feature, key, changes[key])
            self.db.flush()
        return feature

    def delete_feature(self, plan_id: int, feature_id: int) -> PlanFeature:
        with self._atomic():
            feature = self._get_feature(plan_id, feature_id)
            soft_delete(feature)
            self.db.flush()
        return feature

    # ==================== SEED ====================

    def seed_defaults(self) -> int:
        """Insert the default catalog when no plan exists yet. Returns plans created."""
        if self.plans.list_plans(active_only=False):
            return 0
        created = 0
        with self._atomic():
            for definition in get_default_plans():
                plan = self.plans.add(Plan(**self._clean_plan_values(
                    {k: definition[k] for k in _PLAN_FIELDS if k in definition},
                    partial=False,
                )))
                for order, (key, name, value) in enumerate(definition["features"]):
                    self._add_feature(plan, {
                        "feature_key": key, "name": name, "feature_value": value,
                    }, default_order=order)
                created += 1
        logger.info(f"Seeded {created} default plans")
        return created

    # ==================== INTERNAL ====================

    def _get_feature(self, plan_id: int, feature_id: int) -> PlanFeature:
        feature = self.plans.get_feature(plan_id, feature_id)
        if not feature:
            raise NotFoundError(
                "Plan feature not found",
                context={"plan_id": plan_id, "feature_id": feature_id},
            )
        return feature

    def _add_feature(self, plan: Plan, data: Dict[str, Any], default_order: int = 0) -> PlanFeature:
        if not data.get("feature_key"):
            raise BadRequestError("feature_key is required")
        feature = PlanFeature(
            plan_id=plan.id,
            feature_key=data["feature_key"],
            name=data.get("name") or data["feature_key"],
            description=data.get("description"),
            feature_value=data.get("feature_value"),
            is_enabled=data.get("is_enabled", True),
            display_order=data.get("display_order", default_order),
        )
        self.db.add(feature)
        self.db.flush()
        return feature

    def _clean_plan_values(self, data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        values = {k: v for k, v in data.items() if k in _PLAN_FIELDS}
        if partial:
            # None means "not supplied" on updates, except for limits where it means unlimited
            values = {k: v for k, v in values.items() if v is not None or k in _LIMIT_FIELDS}
        else:
            if not values.get("name"):
                raise BadRequestError("Plan name is required")
            if values.get("price") is None:
                raise BadRequestError("Plan price is required")

        if "price" in values:
            price = to_money(values["price"])
            if price < 0:
                raise BadRequestError("Plan price must not be negative", context={"price": str(price)})
            values["price"] = price
        if "currency" in values and not _CURRENCY_RE.match(values["currency"] or ""):
            raise BadRequestError(
                "Currency must be a three-letter ISO 4217 code",
                context={"currency": values["currency"]},
            )
        if "billing_cycle" in values:
            values["billing_cycle"] = BillingCycle.parse(values["billing_cycle"]).value
        if "trial_days" in values and values["trial_days"] < 0:
            raise BadRequestError("trial_days must not be negative")
        for field in _LIMIT_FIELDS:
            if values.get(field) is not None and values[field] < 0:
                raise BadRequestError(f"{field} must not be negative")
        if "metadata" in values:
            values["extra"] = values.pop("metadata") or {}
        return values
