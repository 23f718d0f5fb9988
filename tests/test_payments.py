"""
Invoice and payment tests: completion, failure, refunds, invoice math.
"""

from decimal import Decimal

import pytest

from core.exceptions import BadRequestError, InternalError, NotFoundError
from core.soft_delete import include_deleted
from database.models import Invoice, Payment, Subscription
from database.repositories import SubscriptionRepository
from sqlalchemy.exc import OperationalError


@pytest.fixture
def pending(subscription_service, tenant, paid_plan, notifier):
    result = subscription_service.create_subscription(tenant.id, paid_plan.id)
    notifier.clear()
    return result


@pytest.fixture
def billing(subscription_service):
    return subscription_service.billing


class TestCompletePayment:
    """Payment, invoice and subscription settle together."""

    def test_activates_pending_subscription(self, billing, pending, notifier):
        result = billing.complete_payment(pending["payment"].id, transaction_id="txn_123")

        assert result["payment"].status == "completed"
        assert result["payment"].transaction_id == "txn_123"
        assert result["payment"].payment_date is not None
        assert result["invoice"].status == "paid"
        assert result["invoice"].paid_at is not None
        assert result["subscription"].status == "active"
        assert notifier.names() == ["invoice_paid", "subscription_updated", "payment_succeeded"]

    def test_records_payment_method(self, billing, pending):
        result = billing.complete_payment(pending["payment"].id, payment_method="card")
        assert result["payment"].payment_method == "card"

    def test_already_completed(self, billing, pending):
        billing.complete_payment(pending["payment"].id)
        with pytest.raises(BadRequestError):
            billing.complete_payment(pending["payment"].id)

    def test_unknown_payment(self, billing):
        with pytest.raises(NotFoundError):
            billing.complete_payment(31337)

    def test_active_subscription_left_as_is(self, billing, subscription_service, pending):
        billing.complete_payment(pending["payment"].id)
        renewal = subscription_service.renew_subscription(pending["subscription"].id)

        result = billing.complete_payment(renewal["payment"].id)
        assert result["subscription"].status == "active"

    def test_failure_midway_rolls_back_everything(
        self, billing, pending, session_factory, monkeypatch, notifier
    ):
        def broken_lock(self, entity_id):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("lock timeout"))

        payment_id = pending["payment"].id
        invoice_id = pending["invoice"].id
        subscription_id = pending["subscription"].id
        monkeypatch.setattr(SubscriptionRepository, "get_for_update", broken_lock)

        with pytest.raises(InternalError):
            billing.complete_payment(payment_id, transaction_id="txn_1")

        # The rolled back session must not reopen a transaction before the check
        session = session_factory()
        try:
            assert session.get(Payment, payment_id).status == "pending"
            assert session.get(Payment, payment_id).transaction_id is None
            assert session.get(Invoice, invoice_id).status == "pending"
            assert session.get(Invoice, invoice_id).paid_at is None
            assert session.get(Subscription, subscription_id).status == "pending"
        finally:
            session.close()
        assert notifier.events == []


class TestMarkFailed:

    def test_pending_payment_fails(self, billing, pending, notifier):
        payment = billing.mark_failed(pending["payment"].id, "card declined")

        assert payment.status == "failed"
        assert payment.failure_reason == "card declined"
        assert notifier.names() == ["payment_failed"]

    def test_failed_payment_cannot_complete(self, billing, pending):
        billing.mark_failed(pending["payment"].id, "card declined")
        with pytest.raises(BadRequestError):
            billing.complete_payment(pending["payment"].id)

    def test_completed_payment_cannot_fail(self, billing, pending):
        billing.complete_payment(pending["payment"].id)
        with pytest.raises(BadRequestError):
            billing.mark_failed(pending["payment"].id, "late decline")


class TestRefund:
    """Partial and full refunds of completed payments."""

    @pytest.fixture
    def completed(self, billing, pending, notifier):
        billing.complete_payment(pending["payment"].id)
        notifier.clear()
        return pending

    def test_partial_refund_keeps_payment_completed(self, billing, completed, notifier):
        payment = billing.refund(completed["payment"].id, "19.00", reason="goodwill")

        assert payment.status == "completed"
        assert payment.refunded_amount == Decimal("19.00")
        assert payment.refunded_at is not None
        assert payment.extra["refund_reason"] == "goodwill"
        assert billing.get_invoice(completed["invoice"].id).status == "paid"
        assert notifier.names() == ["payment_refunded"]
        assert notifier.of_type("payment_refunded")[0]["refund_amount"] == "19.00"

    def test_full_refund_in_steps(self, billing, completed, notifier):
        billing.refund(completed["payment"].id, Decimal("19.00"))
        payment = billing.refund(completed["payment"].id, Decimal("30.00"))

        assert payment.status == "refunded"
        assert payment.refunded_amount == Decimal("49.00")
        assert billing.get_invoice(completed["invoice"].id).status == "refunded"
        assert notifier.names()[-1] == "invoice_updated"

    def test_over_refund_rejected(self, billing, completed):
        billing.refund(completed["payment"].id, "40.00")

        with pytest.raises(BadRequestError) as exc_info:
            billing.refund(completed["payment"].id, "9.01")
        assert exc_info.value.context["refundable"] == "9.00"
        assert billing.get_payment(completed["payment"].id).refunded_amount == Decimal("40.00")

    def test_pending_payment_cannot_be_refunded(self, billing, pending):
        with pytest.raises(BadRequestError):
            billing.refund(pending["payment"].id, "1.00")

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_amount(self, billing, completed, amount):
        with pytest.raises(BadRequestError):
            billing.refund(completed["payment"].id, amount)


class TestCreateInvoice:
    """Line item pricing."""

    def test_totals_with_tax_and_discount(self, billing, tenant, notifier):
        invoice = billing.create_invoice(
            tenant.id,
            items=[
                {"itemable_type": "addon", "description": "Extra instance", "quantity": 2,
                 "unit_price": "10.00", "tax_rate": "12"},
                {"description": "Setup", "unit_price": "5.50", "discount_amount": "0.50"},
            ],
            discount="1.00",
        )

        assert invoice.subtotal == Decimal("25.50")
        assert invoice.tax == Decimal("2.40")
        assert invoice.discount == Decimal("1.50")
        assert invoice.total == Decimal("26.40")
        assert invoice.invoice_number.startswith("INV-")
        items = billing.get_invoice_items(invoice.id)
        assert [i.itemable_type for i in items] == ["addon", "custom"]
        assert notifier.names() == ["invoice_created"]

    def test_requires_items(self, billing, tenant):
        with pytest.raises(BadRequestError):
            billing.create_invoice(tenant.id, items=[])

    def test_rejects_bad_quantity(self, billing, tenant):
        with pytest.raises(BadRequestError):
            billing.create_invoice(tenant.id, items=[{"unit_price": "1.00", "quantity": 0}])

    def test_rejects_negative_total(self, billing, tenant):
        with pytest.raises(BadRequestError):
            billing.create_invoice(tenant.id, items=[{"unit_price": "1.00"}], discount="2.00")

    def test_numbers_are_unique(self, billing, tenant):
        numbers = {
            billing.create_invoice(tenant.id, items=[{"unit_price": "1.00"}]).invoice_number
            for _ in range(20)
        }
        assert len(numbers) == 20


    def test_subscription_of_other_tenant_rejected(self, billing, make_tenant, pending):
        stranger = make_tenant()
        with pytest.raises(BadRequestError):
            billing.create_invoice(
                stranger.id, items=[{"unit_price": "1.00"}], subscription_id=pending["subscription"].id
            )


class TestInvoiceMaintenance:
    """Manual edits, settlement and deletion of invoices."""

    @pytest.fixture
    def draft(self, billing, tenant, notifier):
        invoice = billing.create_invoice(tenant.id, items=[{"unit_price": "12.00"}], status="draft")
        notifier.clear()
        return invoice

    def test_update_fields(self, billing, draft, notifier):
        invoice = billing.update_invoice(draft.id, status="pending", notes="Net 7", metadata={"po": "A-1"})

        assert invoice.status == "pending"
        assert invoice.notes == "Net 7"
        assert invoice.extra == {"po": "A-1"}
        assert invoice.paid_at is None
        assert notifier.names() == ["invoice_updated"]

    def test_paid_status_stamps_paid_at_once(self, billing, draft):
        first = billing.update_invoice(draft.id, status="paid").paid_at
        assert first is not None
        assert billing.update_invoice(draft.id, status="paid").paid_at == first

    def test_unknown_status(self, billing, draft):
        with pytest.raises(BadRequestError):
            billing.update_invoice(draft.id, status="archived")

    def test_mark_paid(self, billing, draft, notifier):
        invoice = billing.mark_invoice_paid(draft.id)

        assert invoice.status == "paid"
        assert invoice.paid_at is not None
        assert notifier.names() == ["invoice_paid"]
        with pytest.raises(BadRequestError):
            billing.mark_invoice_paid(draft.id)

    def test_delete_tombstones_draft_and_items(self, billing, db_session, draft, notifier):
        billing.delete_invoice(draft.id)

        with pytest.raises(NotFoundError):
            billing.get_invoice(draft.id)
        assert billing.get_invoice_items(draft.id) == []
        with include_deleted():
            assert db_session.get(Invoice, draft.id).is_deleted
            assert all(i.is_deleted for i in billing.get_invoice_items(draft.id))
        assert notifier.names() == ["invoice_deleted"]

    def test_issued_invoice_cannot_be_deleted(self, billing, pending):
        with pytest.raises(BadRequestError):
            billing.delete_invoice(pending["invoice"].id)
        assert billing.get_invoice(pending["invoice"].id).status == "pending"


class TestManualPayments:
    """Payments recorded and edited by hand."""

    def test_create_against_invoice(self, billing, tenant, pending, notifier):
        payment = billing.create_payment(
            tenant.id, "49.00", "bank_transfer",
            invoice_id=pending["invoice"].id, transaction_id="wire-1",
        )

        assert payment.status == "pending"
        assert payment.payment_number.startswith("PAY-")
        assert payment.subscription_id == pending["subscription"].id
        assert payment.currency == "USD"
        assert payment.refunded_amount == Decimal("0.00")
        assert notifier.names() == ["payment_created"]

    def test_standalone_payment(self, billing, tenant):
        payment = billing.create_payment(tenant.id, "15.00", "cash", currency="EUR")
        assert payment.invoice_id is None
        assert payment.currency == "EUR"

    def test_invoice_of_other_tenant(self, billing, make_tenant, pending):
        stranger = make_tenant()
        with pytest.raises(BadRequestError):
            billing.create_payment(stranger.id, "49.00", "card", invoice_id=pending["invoice"].id)

    @pytest.mark.parametrize("amount", ["0", "-1.00"])
    def test_non_positive_amount(self, billing, tenant, amount):
        with pytest.raises(BadRequestError):
            billing.create_payment(tenant.id, amount, "card")

    def test_update_to_completed_runs_settlement(self, billing, pending, notifier):
        payment = billing.update_payment(
            pending["payment"].id, status="completed", transaction_id="wire-9", metadata={"bank": "KB"},
        )

        assert payment.status == "completed"
        assert payment.transaction_id == "wire-9"
        assert payment.extra == {"bank": "KB"}
        assert billing.get_invoice(pending["invoice"].id).status == "paid"
        assert billing.subscriptions.get(pending["subscription"].id).status == "active"
        assert notifier.names() == [
            "invoice_paid", "subscription_updated", "payment_succeeded", "payment_updated",
        ]

    def test_update_to_failed_records_reason(self, billing, pending):
        payment = billing.update_payment(pending["payment"].id, status="failed", failure_reason="bounced")
        assert payment.status == "failed"
        assert payment.failure_reason == "bounced"

    def test_cancel_only_pending(self, billing, pending):
        assert billing.update_payment(pending["payment"].id, status="cancelled").status == "cancelled"
        with pytest.raises(BadRequestError):
            billing.update_payment(pending["payment"].id, status="cancelled")

    @pytest.mark.parametrize("status", ["refunded", "pending"])
    def test_status_outside_workflow_rejected(self, billing, pending, status):
        with pytest.raises(BadRequestError):
            billing.update_payment(pending["payment"].id, status=status)


class TestBillingQueries:

    def test_list_invoices_and_payments(self, billing, pending, tenant):
        assert [i.id for i in billing.list_invoices(tenant.id)] == [pending["invoice"].id]
        assert billing.list_invoices(tenant.id, status="paid") == []
        payments = billing.list_payments(tenant.id, invoice_id=pending["invoice"].id)
        assert [p.id for p in payments] == [pending["payment"].id]

    def test_unknown_invoice(self, billing):
        with pytest.raises(NotFoundError):
            billing.get_invoice(404)
