"""
Subscription Plans: default catalog

Plans seeded into an empty database on first start. After seeding, the
plans table is the source of truth and platform admins edit it through
the /plans API.

Usage:
    from core.subscription_plans import DEFAULT_PLANS, get_default_plan

    plan = get_default_plan("business")
"""

from decimal import Decimal
from typing import Dict, List, Optional


# ==================== PLAN DEFINITIONS ====================

DEFAULT_PLANS: Dict[str, dict] = {
    "starter": {
        "name": "Starter",
        "description": "Free plan for trying the platform",
        "price": Decimal("0.00"),
        "currency": "USD",
        "billing_cycle": "monthly",
        "trial_days": 0,
        "max_users": 2,
        "max_whatsapp_instances": 1,
        "max_messages_per_month": 500,
        "features": [
            ("contacts", "Contacts", "1000"),
            ("campaigns", "Campaigns", "true"),
            ("api_access", "API access", "false"),
        ],
        "sort_order": 1,
    },
    "business": {
        "name": "Business",
        "description": "For growing teams",
        "price": Decimal("49.00"),
        "currency": "USD",
        "billing_cycle": "monthly",
        "trial_days": 14,
        "max_users": 10,
        "max_whatsapp_instances": 3,
        "max_messages_per_month": 10000,
        "features": [
            ("contacts", "Contacts", "25000"),
            ("campaigns", "Campaigns", "true"),
            ("api_access", "API access", "true"),
            ("webhooks", "Webhooks", "true"),
        ],
        "sort_order": 2,
    },
    "premium": {
        "name": "Premium",
        "description": "High volume messaging",
        "price": Decimal("149.00"),
        "currency": "USD",
        "billing_cycle": "monthly",
        "trial_days": 0,
        "max_users": 50,
        "max_whatsapp_instances": 10,
        "max_messages_per_month": 100000,
        "features": [
            ("contacts", "Contacts", "250000"),
            ("campaigns", "Campaigns", "true"),
            ("api_access", "API access", "true"),
            ("webhooks", "Webhooks", "true"),
            ("priority_support", "Priority support", "true"),
        ],
        "sort_order": 3,
    },
    "enterprise": {
        "name": "Enterprise",
        "description": "Unlimited usage, billed yearly",
        "price": Decimal("4990.00"),
        "currency": "USD",
        "billing_cycle": "annually",
        "trial_days": 0,
        "max_users": None,                # None = unlimited
        "max_whatsapp_instances": None,
        "max_messages_per_month": None,
        "features": [
            ("contacts", "Contacts", "unlimited"),
            ("campaigns", "Campaigns", "true"),
            ("api_access", "API access", "true"),
            ("webhooks", "Webhooks", "true"),
            ("priority_support", "Priority support", "true"),
            ("dedicated_manager", "Dedicated account manager", "true"),
        ],
        "sort_order": 4,
    },
}


def get_default_plan(plan_key: str) -> Optional[dict]:
    """Get default plan definition by key."""
    return DEFAULT_PLANS.get(plan_key)


def get_default_plans() -> List[dict]:
    """Definitions in display order."""
    result = [dict(plan, key=key) for key, plan in DEFAULT_PLANS.items()]
    result.sort(key=lambda p: p["sort_order"])
    return result
