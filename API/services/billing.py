"""
Billing service: invoices, payments, payment completion and refunds.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import BadRequestError, NotFoundError
from core.money import ZERO, to_money
from core.numbering import generate_invoice_number, generate_payment_number
from core.soft_delete import soft_delete
from database.base import utc_now
from database.models import (
    Invoice, InvoiceItem, Payment, Plan, Subscription,
    InvoiceStatus, PaymentStatus, SubscriptionStatus, ItemableType,
)
from database.repositories import InvoiceRepository, PaymentRepository, SubscriptionRepository
from .base import BillingServiceBase
from .notifier import EventType, Notifier

logger = logging.getLogger(__name__)

_ITEMABLE_TYPES = tuple(t.value for t in ItemableType)
_INVOICE_STATUSES = tuple(s.value for s in InvoiceStatus)


class BillingService(BillingServiceBase):

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        super().__init__(db, notifier)
        self.invoices = InvoiceRepository(db)
        self.payments = PaymentRepository(db)
        self.subscriptions = SubscriptionRepository(db)

    # ==================== INVOICES ====================

    def create_invoice(
        self,
        tenant_id: int,
        items: List[Dict[str, Any]],
        currency: Optional[str] = None,
        subscription_id: Optional[int] = None,
        due_date: Optional[datetime] = None,
        discount: Any = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: str = InvoiceStatus.pending.value,
    ) -> Invoice:
        """
        Build an invoice from line items.

        Each item: itemable_type, itemable_id, description, quantity,
        unit_price, tax_rate (percent), discount_amount.
        amount = quantity * unit_price, tax_amount = amount * tax_rate / 100,
        total = subtotal + tax - discount.
        """
        if not items:
            raise BadRequestError("Invoice needs at least one line item")
        lines = [self._price_line(item) for item in items]

        subtotal = sum((line["amount"] for line in lines), ZERO)
        tax = sum((line["tax_amount"] for line in lines), ZERO)
        discount_total = sum((line["discount_amount"] for line in lines), ZERO) + to_money(discount)
        total = subtotal + tax - discount_total
        if total < 0:
            raise BadRequestError(
                "Invoice total must not be negative",
                context={"subtotal": str(subtotal), "tax": str(tax), "discount": str(discount_total)},
            )

        with self._atomic():
            if subscription_id is not None:
                subscription = self.subscriptions.get(subscription_id)
                if not subscription or subscription.tenant_id != tenant_id:
                    raise BadRequestError("Invalid subscription", context={"subscription_id": subscription_id})
            invoice = self.invoices.add(Invoice(
                invoice_number=generate_invoice_number(),
                tenant_id=tenant_id,
                subscription_id=subscription_id,
                status=status,
                subtotal=subtotal,
                tax=tax,
                discount=discount_total,
                total=total,
                currency=currency or settings.default_currency,
                due_date=due_date,
                notes=notes,
                extra=metadata or {},
            ))
            self.invoices.add_items([
                InvoiceItem(invoice_id=invoice.id, tenant_id=tenant_id, extra={}, **line)
                for line in lines
            ])
            self._emit(EventType.invoice_created, tenant_id, invoice.to_dict())
        return invoice

    def create_plan_charge(
        self,
        subscription: Subscription,
        plan: Plan,
        renewal: bool = False,
    ) -> Tuple[Invoice, Payment]:
        """
        Pending invoice with a single plan line, plus the pending payment
        that settles it, for the subscription's current period.
        """
        period_start = subscription.current_period_start
        metadata = {
            "subscription_period": {
                "start": period_start.isoformat(),
                "end": subscription.current_period_end.isoformat(),
            },
        }
        if renewal:
            metadata["renewal"] = True

        with self._atomic():
            invoice = self.create_invoice(
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                currency=subscription.currency,
                due_date=period_start + timedelta(days=settings.invoice_due_days),
                metadata=metadata,
                items=[{
                    "itemable_type": ItemableType.plan.value,
                    "itemable_id": plan.id,
                    "description": plan.description or plan.name,
                    "quantity": 1,
                    "unit_price": subscription.price,
                }],
            )
            payment = self.payments.add(Payment(
                payment_number=generate_payment_number(),
                tenant_id=subscription.tenant_id,
                invoice_id=invoice.id,
                subscription_id=subscription.id,
                status=PaymentStatus.pending.value,
                amount=invoice.total,
                currency=invoice.currency,
                payment_method="pending",
                refunded_amount=ZERO,
                extra={"renewal": True} if renewal else {},
            ))
            self._emit(EventType.payment_created, subscription.tenant_id, payment.to_dict())
        return invoice, payment

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found", context={"invoice_id": invoice_id})
        return invoice

    def get_invoice_items(self, invoice_id: int) -> List[InvoiceItem]:
        return self.invoices.items(invoice_id)

    def list_invoices(
        self, tenant_id: int,
        status: Optional[str] = None,
        subscription_id: Optional[int] = None,
    ) -> List[Invoice]:
        return self.invoices.list_by_tenant(tenant_id, status=status, subscription_id=subscription_id)

    def update_invoice(
        self,
        invoice_id: int,
        status: Optional[str] = None,
        due_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Invoice:
        """Manual edit. Amounts and line items are fixed once issued."""
        if status is not None and status not in _INVOICE_STATUSES:
            raise BadRequestError(
                f"Unknown invoice status: {status}",
                context={"allowed": list(_INVOICE_STATUSES)},
            )

        with self._atomic():
            invoice = self._lock_invoice(invoice_id)
            if status is not None:
                invoice.status = status
                if status == InvoiceStatus.paid.value and invoice.paid_at is None:
                    invoice.paid_at = utc_now()
            if due_date is not None:
                invoice.due_date = due_date
            if notes is not None:
                invoice.notes = notes
            if metadata is not None:
                invoice.extra = dict(invoice.extra or {}, **metadata)
            self.db.flush()
            self._emit(EventType.invoice_updated, invoice.tenant_id, invoice.to_dict())
        return invoice

    def mark_invoice_paid(self, invoice_id: int) -> Invoice:
        """Settle a draft or pending invoice outside the payment flow (e.g. bank transfer)."""
        with self._atomic():
            invoice = self._lock_invoice(invoice_id)
            if invoice.status not in (InvoiceStatus.draft.value, InvoiceStatus.pending.value):
                raise BadRequestError(
                    f"Cannot mark a {invoice.status} invoice as paid",
                    context={"invoice_id": invoice_id, "status": invoice.status},
                )
            invoice.status = InvoiceStatus.paid.value
            invoice.paid_at = utc_now()
            self.db.flush()
            self._emit(EventType.invoice_paid, invoice.tenant_id, invoice.to_dict())
        return invoice

    def delete_invoice(self, invoice_id: int) -> None:
        """Tombstone a draft invoice and its items. Issued invoices are kept."""
        with self._atomic():
            invoice = self._lock_invoice(invoice_id)
            if invoice.status != InvoiceStatus.draft.value:
                raise BadRequestError(
                    "Only draft invoices can be deleted",
                    context={"invoice_id": invoice_id, "status": invoice.status},
                )
            for item in self.invoices.items(invoice_id):
                soft_delete(item)
            soft_delete(invoice)
            self.db.flush()
            self._emit(EventType.invoice_deleted, invoice.tenant_id, {
                "id": invoice.id, "invoice_number": invoice.invoice_number,
            })
        logger.info(f"[tenant {invoice.tenant_id}] Invoice {invoice.invoice_number} deleted")

    # ==================== PAYMENTS ====================

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.payments.get(payment_id)
        if not payment:
            raise NotFoundError("Payment not found", context={"payment_id": payment_id})
        return payment

    def list_payments(
        self, tenant_id: int,
        status: Optional[str] = None,
        invoice_id: Optional[int] = None,
    ) -> List[Payment]:
        return self.payments.list_by_tenant(tenant_id, status=status, invoice_id=invoice_id)

    def create_payment(
        self,
        tenant_id: int,
        amount: Any,
        payment_method: str,
        invoice_id: Optional[int] = None,
        currency: Optional[str] = None,
        payment_gateway: Optional[str] = None,
        transaction_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """Record a pending payment, optionally against one of the tenant's invoices."""
        amount = to_money(amount)
        if amount <= 0:
            raise BadRequestError("Payment amount must be positive", context={"amount": str(amount)})

        with self._atomic():
            invoice = None
            if invoice_id is not None:
                invoice = self.invoices.get(invoice_id)
                if not invoice or invoice.tenant_id != tenant_id:
                    raise BadRequestError("Invalid invoice", context={"invoice_id": invoice_id})

            payment = self.payments.add(Payment(
                payment_number=generate_payment_number(),
                tenant_id=tenant_id,
                invoice_id=invoice_id,
                subscription_id=invoice.subscription_id if invoice else None,
                status=PaymentStatus.pending.value,
                amount=amount,
                currency=currency or (invoice.currency if invoice else settings.default_currency),
                payment_method=payment_method,
                payment_gateway=payment_gateway,
                transaction_id=transaction_id,
                refunded_amount=ZERO,
                extra=metadata or {},
            ))
            self._emit(EventType.payment_created, tenant_id, payment.to_dict())
        return payment

    def update_payment(
        self,
        payment_id: int,
        status: Optional[str] = None,
        transaction_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """
        Manual edit. Status changes go through the payment workflow:
        completed settles like complete_payment, failed like mark_failed,
        cancelled only from pending. Refunds have their own operation.
        """
        if status not in (
            None, PaymentStatus.completed.value, PaymentStatus.failed.value, PaymentStatus.cancelled.value,
        ):
            raise BadRequestError(
                f"Payment status cannot be set to {status}",
                context={"allowed": ["completed", "failed", "cancelled"]},
            )

        with self._atomic():
            payment = self._lock_payment(payment_id)
            if transaction_id is not None:
                payment.transaction_id = transaction_id
            if metadata is not None:
                payment.extra = dict(payment.extra or {}, **metadata)
            self.db.flush()

            if status == PaymentStatus.completed.value:
                self.complete_payment(payment_id)
            elif status == PaymentStatus.failed.value:
                self.mark_failed(payment_id, failure_reason or "Marked failed")
            elif status == PaymentStatus.cancelled.value:
                if payment.status != PaymentStatus.pending.value:
                    raise BadRequestError(
                        f"Only pending payments can be cancelled, this one is {payment.status}",
                        context={"payment_id": payment_id, "status": payment.status},
                    )
                payment.status = PaymentStatus.cancelled.value
            elif failure_reason is not None:
                payment.failure_reason = failure_reason

            self.db.flush()
            self._emit(EventType.payment_updated, payment.tenant_id, payment.to_dict())
        return payment

    def complete_payment(
        self,
        payment_id: int,
        transaction_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Settle a pending payment: payment completed, invoice paid, pending
        subscription activated. All or nothing.
        """
        with self._atomic():
            payment = self._lock_payment(payment_id)
            if payment.status == PaymentStatus.completed.value:
                raise BadRequestError(
                    "Payment is already completed",
                    context={"payment_id": payment_id},
                )
            if payment.status != PaymentStatus.pending.value:
                raise BadRequestError(
                    f"Cannot complete a {payment.status} payment",
                    context={"payment_id": payment_id, "status": payment.status},
                )

            now = utc_now()
            payment.status = PaymentStatus.completed.value
            payment.payment_date = now
            if transaction_id:
                payment.transaction_id = transaction_id
            if payment_method:
                payment.payment_method = payment_method

            invoice = None
            if payment.invoice_id:
                invoice = self.invoices.get_for_update(payment.invoice_id)
                if invoice:
                    invoice.status = InvoiceStatus.paid.value
                    invoice.paid_at = now

            subscription = None
            activated = False
            if payment.subscription_id:
                subscription = self.subscriptions.get_for_update(payment.subscription_id)
                if subscription and subscription.status == SubscriptionStatus.pending.value:
                    subscription.status = SubscriptionStatus.active.value
                    activated = True

            self.db.flush()

            if invoice:
                self._emit(EventType.invoice_paid, payment.tenant_id, invoice.to_dict())
            if activated:
                self._emit(EventType.subscription_updated, payment.tenant_id, dict(
                    subscription.to_dict(), reason="payment_completed",
                ))
            self._emit(EventType.payment_succeeded, payment.tenant_id, payment.to_dict())

        logger.info(f"[tenant {payment.tenant_id}] Payment {payment.payment_number} completed")
        return {"payment": payment, "invoice": invoice, "subscription": subscription}

    def mark_failed(self, payment_id: int, reason: str) -> Payment:
        """Record a failed settlement attempt on a pending payment."""
        with self._atomic():
            payment = self._lock_payment(payment_id)
            if payment.status != PaymentStatus.pending.value:
                raise BadRequestError(
                    f"Only pending payments can fail, this one is {payment.status}",
                    context={"payment_id": payment_id, "status": payment.status},
                )
            payment.status = PaymentStatus.failed.value
            payment.failure_reason = reason
            self.db.flush()
            self._emit(EventType.payment_failed, payment.tenant_id, payment.to_dict())
        return payment

    def refund(self, payment_id: int, amount: Any, reason: Optional[str] = None) -> Payment:
        """
        Refund part or all of a completed payment. A full refund marks the
        payment (and its invoice) refunded; a partial one keeps it completed.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise BadRequestError("Refund amount must be positive", context={"amount": str(amount)})

        with self._atomic():
            payment = self._lock_payment(payment_id)
            if payment.status != PaymentStatus.completed.value:
                raise BadRequestError(
                    "Only completed payments can be refunded",
                    context={"payment_id": payment_id, "status": payment.status},
                )

            refunded = to_money(payment.refunded_amount)
            refundable = to_money(payment.amount) - refunded
            if amount > refundable:
                raise BadRequestError(
                    "Refund exceeds the refundable amount",
                    context={"requested": str(amount), "refundable": str(refundable)},
                )

            payment.refunded_amount = refunded + amount
            payment.refunded_at = utc_now()
            if reason:
                payment.extra = dict(payment.extra or {}, refund_reason=reason)

            invoice = None
            if payment.refunded_amount == to_money(payment.amount):
                payment.status = PaymentStatus.refunded.value
                if payment.invoice_id:
                    invoice = self.invoices.get_for_update(payment.invoice_id)
                    if invoice:
                        invoice.status = InvoiceStatus.refunded.value

            self.db.flush()
            self._emit(EventType.payment_refunded, payment.tenant_id, dict(
                payment.to_dict(), refund_amount=amount,
            ))
            if invoice:
                self._emit(EventType.invoice_updated, payment.tenant_id, invoice.to_dict())
        return payment

    # ==================== INTERNAL ====================

    def _lock_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.invoices.get_for_update(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found", context={"invoice_id": invoice_id})
        return invoice

    def _lock_payment(self, payment_id: int) -> Payment:
        payment = self.payments.get_for_update(payment_id)
        if not payment:
            raise NotFoundError("Payment not found", context={"payment_id": payment_id})
        return payment

    def _price_line(self, item: Dict[str, Any]) -> Dict[str, Any]:
        itemable_type = item.get("itemable_type", ItemableType.custom.value)
        if itemable_type not in _ITEMABLE_TYPES:
            raise BadRequestError(
                f"Unknown item type: {itemable_type}",
                context={"allowed": list(_ITEMABLE_TYPES)},
            )
        quantity = int(item.get("quantity", 1))
        if quantity < 1:
            raise BadRequestError("Item quantity must be at least 1", context={"quantity": quantity})
        unit_price = to_money(item.get("unit_price"))
        if unit_price < 0:
            raise BadRequestError("Item unit price must not be negative")
        tax_rate = Decimal(str(item.get("tax_rate") or 0))
        if tax_rate < 0 or tax_rate > 100:
            raise BadRequestError("Item tax rate must be between 0 and 100", context={"tax_rate": str(tax_rate)})
        discount_amount = to_money(item.get("discount_amount"))
        if discount_amount < 0:
            raise BadRequestError("Item discount must not be negative")

        amount = to_money(unit_price * quantity)
        return {
            "itemable_type": itemable_type,
            "itemable_id": item.get("itemable_id"),
            "description": item.get("description") or itemable_type,
            "quantity": quantity,
            "unit_price": unit_price,
            "amount": amount,
            "tax_rate": tax_rate,
            "tax_amount": to_money(amount * tax_rate / 100),
            "discount_amount": discount_amount,
        }
