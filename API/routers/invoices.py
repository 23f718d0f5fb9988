"""
Invoices: tenant invoice history and manual invoicing.
Endpoint: /api/v1/invoices/...
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from core.access import TenantAccessGuard, MANAGE_ROLES, READ_ROLES
from core.dependencies import get_current_user_id, get_access_guard, get_billing_service
from schemas.billing import InvoiceCreate, InvoiceUpdate, InvoiceResponse, InvoiceDetailResponse
from services.billing import BillingService

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.get("")
async def list_invoices(
    tenant_id: int = Query(...),
    status_filter: Optional[str] = Query(None, alias="status"),
    subscription_id: Optional[int] = Query(None),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    guard.authorize(user_id, tenant_id, READ_ROLES)
    items = service.list_invoices(tenant_id, status=status_filter, subscription_id=subscription_id)
    return {"data": [InvoiceResponse.model_validate(i) for i in items], "count": len(items)}


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    """Invoice with its line items."""
    invoice = service.get_invoice(invoice_id)
    guard.authorize(user_id, invoice.tenant_id, READ_ROLES)
    return {"data": InvoiceDetailResponse.model_validate(invoice)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    body: InvoiceCreate,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    """Manual invoice. Starts as a draft."""
    guard.authorize(user_id, body.tenant_id, MANAGE_ROLES)
    invoice = service.create_invoice(
        tenant_id=body.tenant_id,
        subscription_id=body.subscription_id,
        items=[item.model_dump() for item in body.items],
        currency=body.currency,
        due_date=body.due_date,
        notes=body.notes,
        metadata=body.metadata,
        status="draft",
    )
    return {"success": True, "data": InvoiceDetailResponse.model_validate(invoice)}


@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    body: InvoiceUpdate,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    invoice = service.get_invoice(invoice_id)
    guard.authorize(user_id, invoice.tenant_id, MANAGE_ROLES)
    invoice = service.update_invoice(
        invoice_id,
        status=body.status,
        due_date=body.due_date,
        notes=body.notes,
        metadata=body.metadata,
    )
    return {"success": True, "data": InvoiceResponse.model_validate(invoice)}


@router.post("/{invoice_id}/mark-paid")
async def mark_invoice_paid(
    invoice_id: int,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    invoice = service.get_invoice(invoice_id)
    guard.authorize(user_id, invoice.tenant_id, MANAGE_ROLES)
    invoice = service.mark_invoice_paid(invoice_id)
    return {"success": True, "data": InvoiceResponse.model_validate(invoice)}


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: int,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: BillingService = Depends(get_billing_service),
):
    """Drafts only. The row is tombstoned, not removed."""
    invoice = service.get_invoice(invoice_id)
    guard.authorize(user_id, invoice.tenant_id, MANAGE_ROLES)
    service.delete_invoice(invoice_id)
    return {"success": True, "message": "Invoice deleted"}
