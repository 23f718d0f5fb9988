"""
Subscriptions: subscribe, renew, cancel and inspect tenant subscriptions.
Endpoint: /api/v1/subscriptions/...
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from core.access import TenantAccessGuard, MANAGE_ROLES, READ_ROLES
from core.dependencies import get_current_user_id, get_access_guard, get_subscription_service
from schemas.billing import InvoiceResponse, PaymentResponse
from schemas.subscription import (
    SubscriptionCreate, SubscriptionUpdate, SubscriptionCancel,
    SubscriptionResponse, SubscriptionDetailResponse,
)
from services.subscription import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


def _workflow_data(result: dict) -> dict:
    return {
        "subscription": SubscriptionResponse.model_validate(result["subscription"]),
        "invoice": InvoiceResponse.model_validate(result["invoice"]) if result["invoice"] else None,
        "payment": PaymentResponse.model_validate(result["payment"]) if result["payment"] else None,
        "is_free": result["is_free"],
    }


# ==================== QUERIES ====================

@router.get("")
async def list_subscriptions(
    tenant_id: int = Query(...),
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Subscriptions of a tenant, newest first."""
    guard.authorize(user_id, tenant_id, READ_ROLES)
    items = service.list_subscriptions(tenant_id, status=status_filter)
    return {"data": [SubscriptionResponse.model_validate(s) for s in items], "count": len(items)}


@router.get("/active")
async def get_active_subscription(
    tenant_id: int = Query(...),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """The tenant's current subscription (trial, active or pending), or null."""
    guard.authorize(user_id, tenant_id, READ_ROLES)
    subscription = service.get_active_subscription(tenant_id)
    return {"data": SubscriptionDetailResponse.model_validate(subscription) if subscription else None}


@router.get("/{subscription_id}")
async def get_subscription(
    subscription_id: int,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id)
    guard.authorize(user_id, subscription.tenant_id, READ_ROLES)
    return {"data": SubscriptionDetailResponse.model_validate(subscription)}


# ==================== WORKFLOW ====================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_subscription(
    body: SubscriptionCreate,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Subscribe a tenant to a plan. Paid plans without trial come back pending with an invoice."""
    guard.authorize(user_id, body.tenant_id, MANAGE_ROLES)
    result = service.create_subscription(
        tenant_id=body.tenant_id,
        plan_id=body.plan_id,
        start_date=body.start_date,
        metadata=body.metadata,
    )
    return {"success": True, "data": _workflow_data(result)}


@router.patch("/{subscription_id}")
async def update_subscription(
    subscription_id: int,
    body: SubscriptionUpdate,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id)
    guard.authorize(user_id, subscription.tenant_id, MANAGE_ROLES)
    subscription = service.update_subscription(
        subscription_id,
        status=body.status,
        cancel_at_period_end=body.cancel_at_period_end,
        metadata=body.metadata,
    )
    return {"success": True, "data": SubscriptionResponse.model_validate(subscription)}


@router.post("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: int,
    body: SubscriptionCancel = SubscriptionCancel(),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id)
    guard.authorize(user_id, subscription.tenant_id, MANAGE_ROLES)
    subscription = service.cancel_subscription(subscription_id, body.cancel_at_period_end)
    return {"success": True, "data": SubscriptionResponse.model_validate(subscription)}


@router.post("/{subscription_id}/renew")
async def renew_subscription(
    subscription_id: int,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id)
    guard.authorize(user_id, subscription.tenant_id, MANAGE_ROLES)
    result = service.renew_subscription(subscription_id)
    return {"success": True, "data": _workflow_data(result)}
