"""
Payments: record, settle, refund and fail tenant payments.
Endpoint: /api/v1/payments/...
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from core.access import TenantAccessGuard, MANAGE_ROLES, READ_ROLES
from core.dependencies import get_current_user_id, get_access_guard, get_billing_service
from schemas.billing import (
    PaymentCreate, PaymentUpdate, PaymentComplete, PaymentRefund, PaymentMarkFailed,
    PaymentResponse, InvoiceResponse,
)
from schemas.subscription import SubscriptionResponse
from services.billing import BillingService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("")
async def list_payments(
    tenant_id: int = Query(...),
    status_filter: Optional[str] = Query(None, alias="status"),
    invoice_id: Optional[int] = Query(None),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    guard.authorize(user_id, tenant_id, READ_ROLES)
    items = service.list_payments(tenant_id, status=status_filter, invoice_id=invoice_id)
    return {"data": [PaymentResponse.model_validate(p) for p in items], "count": len(items)}


@router.get("/{payment_id}")
async def get_payment(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    payment = service.get_payment(payment_id)
    guard.authorize(user_id, payment.tenant_id, READ_ROLES)
    return {"data": PaymentResponse.model_validate(payment)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreate,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    """Record a manual payment. It starts pending."""
    guard.authorize(user_id, body.tenant_id, MANAGE_ROLES)
    payment = service.create_payment(
        tenant_id=body.tenant_id,
        amount=body.amount,
        payment_method=body.payment_method,
        invoice_id=body.invoice_id,
        currency=body.currency,
        payment_gateway=body.payment_gateway,
        transaction_id=body.transaction_id,
        metadata=body.metadata,
    )
    return {"success": True, "data": PaymentResponse.model_validate(payment)}


@router.patch("/{payment_id}")
async def update_payment(
    payment_id: int,
    body: PaymentUpdate,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    payment = service.get_payment(payment_id)
    guard.authorize(user_id, payment.tenant_id, MANAGE_ROLES)
    payment = service.update_payment(
        payment_id,
        status=body.status,
        transaction_id=body.transaction_id,
        failure_reason=body.failure_reason,
        metadata=body.metadata,
    )
    return {"success": True, "data": PaymentResponse.model_validate(payment)}


@router.post("/{payment_id}/complete")
async def complete_payment(
    payment_id: int,
    body: PaymentComplete = PaymentComplete(),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    """Mark the payment completed, its invoice paid and a pending subscription active."""
    payment = service.get_payment(payment_id)
    guard.authorize(user_id, payment.tenant_id, MANAGE_ROLES)
    result = service.complete_payment(
        payment_id,
        transaction_id=body.transaction_id,
        payment_method=body.payment_method,
    )
    return {
        "success": True,
        "data": {
            "payment": PaymentResponse.model_validate(result["payment"]),
            "invoice": InvoiceResponse.model_validate(result["invoice"]) if result["invoice"] else None,
            "subscription": (
                SubscriptionResponse.model_validate(result["subscription"])
                if result["subscription"] else None
            ),
        },
    }


@router.post("/{payment_id}/refund")
async def refund_payment(
    payment_id: int,
    body: PaymentRefund,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    payment = service.get_payment(payment_id)
    guard.authorize(user_id, payment.tenant_id, MANAGE_ROLES)
    payment = service.refund(payment_id, body.amount, reason=body.reason)
    return {"success": True, "data": PaymentResponse.model_validate(payment)}


@router.post("/{payment_id}/mark-failed")
async def mark_payment_failed(
    payment_id: int,
    body: PaymentMarkFailed,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    payment = service.get_payment(payment_id)
    guard.authorize(user_id, payment.tenant_id, MANAGE_ROLES)
    payment = service.mark_failed(payment_id, body.reason)
    return {"success": True, "data": PaymentResponse.model_validate(payment)}
