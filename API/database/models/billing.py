"""
Billing records: invoices, invoice line items and payments.

Invoices and payments are audit records. They reference the subscription
that produced them but outlive it, and are soft deleted only.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Text, Numeric,
    ForeignKey, JSON, Index, CheckConstraint
)
from sqlalchemy.orm import relationship

from ..base import TenantBaseModel, SoftDeleteMixin, TZDateTime


class InvoiceStatus(str, PyEnum):
    draft = "draft"
    pending = "pending"
    paid = "paid"
    cancelled = "cancelled"
    refunded = "refunded"


class PaymentStatus(str, PyEnum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"
    cancelled = "cancelled"


class ItemableType(str, PyEnum):
    plan = "plan"
    addon = "addon"
    custom = "custom"


class Invoice(TenantBaseModel, SoftDeleteMixin):
    """Billing statement for a period's charge."""

    __tablename__ = 'invoices'

    invoice_number = Column(String(64), unique=True, nullable=False)
    subscription_id = Column(
        Integer, ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True, index=True
    )
    status = Column(String(20), default=InvoiceStatus.draft.value, nullable=False)

    # Amounts
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), default=0, nullable=False)
    discount = Column(Numeric(10, 2), default=0, nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='USD', nullable=False)

    due_date = Column(TZDateTime, nullable=True)
    paid_at = Column(TZDateTime, nullable=True)
    notes = Column(Text, nullable=True)

    extra = Column('metadata', JSON, default=dict, nullable=False)

    items = relationship("InvoiceItem", back_populates="invoice", order_by="InvoiceItem.id")

    __table_args__ = (
        Index('ix_invoices_tenant_status', 'tenant_id', 'status'),
    )


class InvoiceItem(TenantBaseModel, SoftDeleteMixin):
    """
    Invoice line. amount = quantity * unit_price,
    tax_amount = amount * tax_rate / 100.
    """

    __tablename__ = 'invoice_items'

    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True)

    # Polymorphic reference to the priced thing
    itemable_type = Column(String(20), nullable=False)
    itemable_id = Column(Integer, nullable=True)

    description = Column(Text, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(10, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(10, 2), default=0, nullable=False)

    extra = Column('metadata', JSON, default=dict, nullable=False)

    invoice = relationship("Invoice", back_populates="items")

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_invoice_item_quantity_positive'),
    )


class Payment(TenantBaseModel, SoftDeleteMixin):
    """Settlement attempt against an invoice."""

    __tablename__ = 'payments'

    payment_number = Column(String(64), unique=True, nullable=False)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True, index=True)
    subscription_id = Column(
        Integer, ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True, index=True
    )
    status = Column(String(20), default=PaymentStatus.pending.value, nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='USD', nullable=False)
    payment_method = Column(String(30), nullable=False)  # pending, card, bank_transfer, ...
    payment_gateway = Column(String(30), nullable=True)
    transaction_id = Column(String(255), nullable=True)  # external reference
    payment_date = Column(TZDateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)

    refunded_amount = Column(Numeric(10, 2), default=0, nullable=False)
    refunded_at = Column(TZDateTime, nullable=True)

    extra = Column('metadata', JSON, default=dict, nullable=False)

    invoice = relationship("Invoice")

    __table_args__ = (
        Index('ix_payments_tenant_status', 'tenant_id', 'status'),
        CheckConstraint('refunded_amount <= amount', name='ck_payment_refund_within_amount'),
    )
