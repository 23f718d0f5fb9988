"""
Invoice and payment schemas.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from .common import Money, CURRENCY_PATTERN


class PaymentComplete(BaseModel):
    transaction_id: Optional[str] = Field(None, max_length=255)
    payment_method: Optional[str] = Field(None, max_length=30)


class PaymentRefund(BaseModel):
    amount: Money = Field(..., gt=0)
    reason: Optional[str] = None


class PaymentMarkFailed(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentCreate(BaseModel):
    tenant_id: int
    amount: Money = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=30)
    invoice_id: Optional[int] = None
    currency: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    payment_gateway: Optional[str] = Field(None, max_length=30)
    transaction_id: Optional[str] = Field(None, max_length=255)
    metadata: Optional[Dict[str, Any]] = None


class PaymentUpdate(BaseModel):
    status: Optional[str] = None
    transaction_id: Optional[str] = Field(None, max_length=255)
    failure_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class InvoiceItemCreate(BaseModel):
    itemable_type: str = "custom"
    itemable_id: Optional[int] = None
    description: Optional[str] = None
    quantity: int = Field(1, ge=1)
    unit_price: Money = Field(..., ge=0)
    tax_rate: Money = Field(Decimal("0"), ge=0, le=100)
    discount_amount: Money = Field(Decimal("0"), ge=0)


class InvoiceCreate(BaseModel):
    tenant_id: int
    subscription_id: Optional[int] = None
    items: List[InvoiceItemCreate] = Field(..., min_length=1)
    currency: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class InvoiceUpdate(BaseModel):
    status: Optional[str] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    itemable_type: str
    itemable_id: Optional[int] = None
    description: str
    quantity: int
    unit_price: Money
    amount: Money
    tax_rate: Money
    tax_amount: Money
    discount_amount: Money


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    invoice_number: str
    subscription_id: Optional[int] = None
    status: str
    subtotal: Money
    tax: Money
    discount: Money
    total: Money
    currency: str
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    created_at: datetime


class InvoiceDetailResponse(InvoiceResponse):
    items: List[InvoiceItemResponse] = Field(default_factory=list)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    payment_number: str
    invoice_id: Optional[int] = None
    subscription_id: Optional[int] = None
    status: str
    amount: Money
    currency: str
    payment_method: str
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    refunded_amount: Money
    refunded_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    created_at: datetime
