"""
Subscription state machine tests: create, renew, cancel, administrative update.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.exceptions import BadRequestError, ConflictError, NotFoundError
from database.models import Invoice, Payment, Subscription, SubscriptionStatus
from database.repositories import UsageRepository
from services.plan_catalog import PlanCatalogService
from services.usage import TRACKED_FEATURES


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestCreateSubscription:
    """Initial status, snapshots and billing artifacts."""

    def test_free_plan_is_active_without_invoice(self, subscription_service, tenant, free_plan, notifier):
        result = subscription_service.create_subscription(tenant.id, free_plan.id)

        subscription = result["subscription"]
        assert subscription.status == SubscriptionStatus.active.value
        assert result["is_free"] is True
        assert result["invoice"] is None
        assert result["payment"] is None
        assert notifier.names() == ["subscription_created"]

    def test_paid_plan_is_pending_with_one_invoice_and_payment(
        self, subscription_service, db_session, tenant, paid_plan, notifier
    ):
        result = subscription_service.create_subscription(tenant.id, paid_plan.id)

        assert result["subscription"].status == SubscriptionStatus.pending.value
        assert result["is_free"] is False

        invoice, payment = result["invoice"], result["payment"]
        assert invoice.total == Decimal("49.00")
        assert invoice.status == "pending"
        assert invoice.subscription_id == result["subscription"].id
        assert payment.status == "pending"
        assert payment.amount == Decimal("49.00")
        assert payment.payment_method == "pending"
        assert payment.invoice_id == invoice.id

        assert db_session.query(Invoice).filter_by(tenant_id=tenant.id).count() == 1
        assert db_session.query(Payment).filter_by(tenant_id=tenant.id).count() == 1
        assert notifier.names() == ["subscription_created", "invoice_created", "payment_created"]

    def test_invoice_due_one_week_after_period_start(self, subscription_service, tenant, paid_plan):
        start = utc(2024, 3, 1, 9)
        result = subscription_service.create_subscription(tenant.id, paid_plan.id, start_date=start)
        assert result["invoice"].due_date == start + timedelta(days=7)

    def test_invoice_has_single_plan_line(self, subscription_service, tenant, paid_plan):
        result = subscription_service.create_subscription(tenant.id, paid_plan.id)
        items = subscription_service.billing.get_invoice_items(result["invoice"].id)

        assert len(items) == 1
        assert items[0].itemable_type == "plan"
        assert items[0].itemable_id == paid_plan.id
        assert items[0].quantity == 1
        assert items[0].amount == Decimal("49.00")

    def test_trial_plan_starts_in_trial(self, subscription_service, tenant, trial_plan):
        start = utc(2024, 6, 1)
        result = subscription_service.create_subscription(tenant.id, trial_plan.id, start_date=start)

        subscription = result["subscription"]
        assert subscription.status == SubscriptionStatus.trial.value
        assert subscription.trial_start == start
        assert subscription.trial_end == start + timedelta(days=14)
        assert result["invoice"] is None

    def test_free_plan_with_trial_days_is_active(self, subscription_service, tenant, make_plan):
        plan = make_plan("Free trial", "0.00", trial_days=7)
        result = subscription_service.create_subscription(tenant.id, plan.id)
        assert result["subscription"].status == SubscriptionStatus.active.value
        assert result["subscription"].trial_end is None

    def test_period_follows_plan_cycle(self, subscription_service, tenant, make_plan):
        plan = make_plan("Yearly", "0.00", billing_cycle="annually")
        result = subscription_service.create_subscription(tenant.id, plan.id, start_date=utc(2024, 2, 29))

        subscription = result["subscription"]
        assert subscription.current_period_start == utc(2024, 2, 29)
        assert subscription.current_period_end == utc(2025, 2, 28)
        assert subscription.billing_anchor == utc(2024, 2, 29)
        assert subscription.period_index == 0

    def test_start_date_converted_to_utc(self, subscription_service, tenant, free_plan):
        tashkent = timezone(timedelta(hours=5))
        result = subscription_service.create_subscription(
            tenant.id, free_plan.id, start_date=datetime(2024, 1, 1, 3, tzinfo=tashkent)
        )
        assert result["subscription"].current_period_start == utc(2023, 12, 31, 22)

    def test_snapshots_price_currency_and_features(self, subscription_service, tenant, paid_plan):
        result = subscription_service.create_subscription(tenant.id, paid_plan.id, metadata={"source": "web"})
        subscription = result["subscription"]

        assert subscription.price == Decimal("49.00")
        assert subscription.currency == "USD"
        assert subscription.extra == {"source": "web"}
        features = subscription_service.get_features(subscription.id)
        assert [(f.feature_key, f.feature_value) for f in features] == [
            ("messages_sent", "3"), ("api_access", "true"),
        ]

    def test_seeds_zeroed_counters_for_every_tracked_feature(
        self, subscription_service, db_session, tenant, paid_plan
    ):
        subscription = subscription_service.create_subscription(tenant.id, paid_plan.id)["subscription"]
        rows = UsageRepository(db_session).list_for_period(subscription.id, subscription.current_period_start)

        assert sorted(r.feature_key for r in rows) == sorted(TRACKED_FEATURES)
        assert all(r.usage_count == 0 for r in rows)
        limits = {r.feature_key: r.limit for r in rows}
        assert limits["messages_sent"] == 3
        assert limits["whatsapp_instances"] == 2
        assert limits["api_calls"] is None

    def test_second_live_subscription_conflicts(self, subscription_service, db_session, tenant, free_plan, paid_plan, notifier):
        subscription_service.create_subscription(tenant.id, free_plan.id)
        notifier.clear()

        with pytest.raises(ConflictError):
            subscription_service.create_subscription(tenant.id, paid_plan.id)

        assert db_session.query(Subscription).filter_by(tenant_id=tenant.id).count() == 1
        assert db_session.query(Invoice).count() == 0
        assert notifier.events == []

    def test_other_tenants_are_independent(self, subscription_service, make_tenant, free_plan):
        first, second = make_tenant(), make_tenant()
        subscription_service.create_subscription(first.id, free_plan.id)
        result = subscription_service.create_subscription(second.id, free_plan.id)
        assert result["subscription"].tenant_id == second.id

    def test_naive_start_date_rejected(self, subscription_service, tenant, free_plan):
        with pytest.raises(BadRequestError):
            subscription_service.create_subscription(tenant.id, free_plan.id, start_date=datetime(2024, 1, 1))

    def test_unknown_plan(self, subscription_service, tenant):
        with pytest.raises(NotFoundError):
            subscription_service.create_subscription(tenant.id, 9999)

    def test_inactive_plan_rejected(self, subscription_service, tenant, make_plan):
        plan = make_plan("Retired", "10.00", is_active=False)
        with pytest.raises(BadRequestError):
            subscription_service.create_subscription(tenant.id, plan.id)

    def test_unknown_tenant(self, subscription_service, free_plan):
        with pytest.raises(NotFoundError):
            subscription_service.create_subscription(4242, free_plan.id)


class TestRenewSubscription:
    """Next period, fresh counters, renewal charge."""

    def test_advances_one_cycle_from_previous_end(self, subscription_service, tenant, free_plan, notifier):
        subscription = subscription_service.create_subscription(
            tenant.id, free_plan.id, start_date=utc(2024, 4, 10)
        )["subscription"]

        result = subscription_service.renew_subscription(subscription.id)

        renewed = result["subscription"]
        assert renewed.current_period_start == utc(2024, 5, 10)
        assert renewed.current_period_end == utc(2024, 6, 10)
        assert renewed.period_index == 1
        assert renewed.status == SubscriptionStatus.active.value
        assert result["invoice"] is None
        assert "subscription_renewed" in notifier.names()

    def test_month_end_anchor_does_not_drift(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(
            tenant.id, free_plan.id, start_date=utc(2024, 1, 31)
        )["subscription"]

        first = subscription_service.renew_subscription(subscription.id)["subscription"]
        assert (first.current_period_start, first.current_period_end) == (utc(2024, 2, 29), utc(2024, 3, 31))

        second = subscription_service.renew_subscription(subscription.id)["subscription"]
        assert (second.current_period_start, second.current_period_end) == (utc(2024, 3, 31), utc(2024, 4, 30))

    def test_n_renewals_land_n_cycles_after_start(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(
            tenant.id, free_plan.id, start_date=utc(2024, 1, 15)
        )["subscription"]
        for _ in range(5):
            subscription = subscription_service.renew_subscription(subscription.id)["subscription"]
        assert subscription.current_period_end == utc(2024, 7, 15)

    def test_counters_start_fresh_and_history_is_kept(
        self, subscription_service, db_session, tenant, free_plan
    ):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.usage.track_usage(tenant.id, "messages_sent", increment_by=40)
        old_start = subscription.current_period_start

        renewed = subscription_service.renew_subscription(subscription.id)["subscription"]

        usage = UsageRepository(db_session)
        current = usage.list_for_period(renewed.id, renewed.current_period_start)
        assert sorted(r.feature_key for r in current) == sorted(TRACKED_FEATURES)
        assert all(r.usage_count == 0 for r in current)
        old = usage.get_for_period(renewed.id, "messages_sent", old_start)
        assert old.usage_count == 40

    def test_plan_edit_does_not_change_existing_quotas(
        self, subscription_service, db_session, tenant, free_plan, notifier
    ):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        PlanCatalogService(db_session, notifier).update_plan(
            free_plan.id, {"max_messages_per_month": 5, "max_whatsapp_instances": None}
        )

        subscription_service.renew_subscription(subscription.id)

        usage = subscription_service.usage
        assert usage.check_usage_limit(tenant.id, "messages_sent")["limit"] == 100
        assert usage.check_usage_limit(tenant.id, "whatsapp_instances")["limit"] == 1

    def test_lazily_created_counter_keeps_previous_limit(
        self, subscription_service, db_session, tenant, free_plan, notifier
    ):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        renewed = subscription_service.renew_subscription(subscription.id)["subscription"]
        counter = UsageRepository(db_session).get_for_period(
            renewed.id, "messages_sent", renewed.current_period_start
        )
        db_session.delete(counter)
        db_session.commit()
        PlanCatalogService(db_session, notifier).update_plan(free_plan.id, {"max_messages_per_month": 5})

        usage = subscription_service.usage.track_usage(tenant.id, "messages_sent", increment_by=50)
        assert usage.limit == 100
        assert usage.usage_count == 50

    def test_new_subscription_takes_current_ceilings(
        self, subscription_service, db_session, make_tenant, free_plan, notifier
    ):
        PlanCatalogService(db_session, notifier).update_plan(free_plan.id, {"max_messages_per_month": 5})
        newcomer = make_tenant()

        subscription_service.create_subscription(newcomer.id, free_plan.id)
        assert subscription_service.usage.check_usage_limit(newcomer.id, "messages_sent")["limit"] == 5

    def test_paid_renewal_charges_snapshot_price(
        self, subscription_service, db_session, tenant, paid_plan, notifier
    ):
        created = subscription_service.create_subscription(tenant.id, paid_plan.id)
        subscription_service.billing.complete_payment(created["payment"].id)

        paid_plan.price = Decimal("99.00")
        db_session.commit()
        notifier.clear()

        result = subscription_service.renew_subscription(created["subscription"].id)

        assert result["invoice"].total == Decimal("49.00")
        assert result["payment"].status == "pending"
        assert result["invoice"].extra.get("renewal") is True
        assert notifier.names() == ["subscription_renewed", "invoice_created", "payment_created"]

    def test_clears_cancel_at_period_end(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=True)

        renewed = subscription_service.renew_subscription(subscription.id)["subscription"]
        assert renewed.cancel_at_period_end is False

    def test_cancelled_subscription_cannot_renew(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=False)

        with pytest.raises(BadRequestError):
            subscription_service.renew_subscription(subscription.id)

    def test_unknown_subscription(self, subscription_service):
        with pytest.raises(NotFoundError):
            subscription_service.renew_subscription(12345)

    def test_retired_plan_still_renews(self, subscription_service, tenant, free_plan):
        from services.plan_catalog import PlanCatalogService

        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        PlanCatalogService(subscription_service.db).delete_plan(free_plan.id)

        renewed = subscription_service.renew_subscription(subscription.id)["subscription"]
        assert renewed.period_index == 1


class TestCancelSubscription:
    """Immediate and end-of-period cancellation."""

    def test_cancel_at_period_end_keeps_status(self, subscription_service, tenant, free_plan, notifier):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]

        cancelled = subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=True)

        assert cancelled.status == SubscriptionStatus.active.value
        assert cancelled.cancel_at_period_end is True
        assert cancelled.cancelled_at is None
        assert notifier.names()[-1] == "subscription_cancelled"

    def test_immediate_cancel(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]

        cancelled = subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=False)

        assert cancelled.status == SubscriptionStatus.cancelled.value
        assert cancelled.cancelled_at is not None

    def test_cancel_twice_rejected(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=False)

        with pytest.raises(BadRequestError):
            subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=False)

    def test_tenant_can_resubscribe_after_cancel(self, subscription_service, tenant, free_plan, paid_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.cancel_subscription(subscription.id, cancel_at_period_end=False)

        result = subscription_service.create_subscription(tenant.id, paid_plan.id)
        assert result["subscription"].status == SubscriptionStatus.pending.value
        assert subscription_service.get_active_subscription(tenant.id).id == result["subscription"].id


class TestUpdateSubscription:
    """Administrative changes."""

    def test_cancelled_status_sets_cancelled_at(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]

        updated = subscription_service.update_subscription(subscription.id, status="cancelled")

        assert updated.status == "cancelled"
        assert updated.cancelled_at is not None

    def test_past_due_is_not_live(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.update_subscription(subscription.id, status="past_due")
        assert subscription_service.get_active_subscription(tenant.id) is None

    def test_unknown_status_rejected(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        with pytest.raises(BadRequestError):
            subscription_service.update_subscription(subscription.id, status="paused")

    def test_metadata_is_merged(self, subscription_service, tenant, free_plan):
        subscription = subscription_service.create_subscription(
            tenant.id, free_plan.id, metadata={"source": "web"}
        )["subscription"]

        updated = subscription_service.update_subscription(subscription.id, metadata={"campaign": "spring"})
        assert updated.extra == {"source": "web", "campaign": "spring"}

    def test_reviving_conflicts_with_live_subscription(self, subscription_service, tenant, free_plan):
        old = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.cancel_subscription(old.id, cancel_at_period_end=False)
        subscription_service.create_subscription(tenant.id, free_plan.id)

        with pytest.raises(ConflictError):
            subscription_service.update_subscription(old.id, status="active")


class TestQueries:

    def test_list_filters_by_status(self, subscription_service, tenant, free_plan):
        old = subscription_service.create_subscription(tenant.id, free_plan.id)["subscription"]
        subscription_service.cancel_subscription(old.id, cancel_at_period_end=False)
        subscription_service.create_subscription(tenant.id, free_plan.id)

        assert len(subscription_service.list_subscriptions(tenant.id)) == 2
        cancelled = subscription_service.list_subscriptions(tenant.id, status="cancelled")
        assert [s.id for s in cancelled] == [old.id]

    def test_list_rejects_unknown_status(self, subscription_service, tenant):
        with pytest.raises(BadRequestError):
            subscription_service.list_subscriptions(tenant.id, status="bogus")

    def test_no_active_subscription(self, subscription_service, tenant):
        assert subscription_service.get_active_subscription(tenant.id) is None
