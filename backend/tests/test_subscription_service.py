"""Subscription reconciliation and billing initiator tests"""
import logging

import pytest

from lemons.core.errors import Conflict, CorrelationMissing, InvalidRequest
from lemons.models.account import SubscriptionStatus, SubscriptionTier
from lemons.models.subscription_event import SubscriptionEvent
from lemons.schemas.events import SubscriptionObject
from lemons.services.event_classifier import SubscriptionLifecycleEvent
from lemons.services.subscription_service import (
    create_billing_portal_url, map_subscription_status, reconcile_subscription, start_subscription_checkout
)


def lifecycle(subscription: dict, event_id="evt_sub", event_type="customer.subscription.updated", created=None):
    return SubscriptionLifecycleEvent(
        event_id=event_id,
        event_type=event_type,
        subscription=SubscriptionObject.model_validate(subscription),
        created=created,
    )


@pytest.mark.critical
class TestReconcileSubscription:

    def test_active_subscription_sets_tier(self, db_session, new_account, subscription_factory):
        outcome = reconcile_subscription(lifecycle(subscription_factory(new_account.id)), db_session)

        assert outcome == "applied"
        db_session.refresh(new_account)
        assert new_account.subscription_tier == SubscriptionTier.PRO
        assert new_account.subscription_status == SubscriptionStatus.ACTIVE
        assert new_account.subscription_external_id == "sub_test123"
        assert new_account.stripe_customer_id == "cus_test123"
        assert new_account.subscription_current_period_end is not None

        audit = db_session.query(SubscriptionEvent).one()
        assert audit.previous_tier == SubscriptionTier.FREE
        assert audit.new_tier == SubscriptionTier.PRO
        assert audit.external_status == "active"

    def test_same_event_many_times_yields_one_audit_row(self, db_session, new_account, subscription_factory):
        event = lifecycle(subscription_factory(new_account.id, product="prod_business"))
        outcomes = [reconcile_subscription(event, db_session) for _ in range(4)]

        assert outcomes == ["applied", "duplicate", "duplicate", "duplicate"]
        assert db_session.query(SubscriptionEvent).count() == 1
        db_session.refresh(new_account)
        assert new_account.subscription_tier == SubscriptionTier.BUSINESS
        assert new_account.subscription_status == SubscriptionStatus.ACTIVE

    def test_unknown_product_grants_free_and_logs(self, db_session, new_account, subscription_factory, caplog):
        with caplog.at_level(logging.WARNING, logger="reconciliation"):
            reconcile_subscription(lifecycle(subscription_factory(new_account.id, product="prod_mystery")), db_session)

        db_session.refresh(new_account)
        assert new_account.subscription_tier == SubscriptionTier.FREE
        assert new_account.subscription_status == SubscriptionStatus.ACTIVE
        assert "prod_mystery" in caplog.text

    def test_trialing_is_entitled(self, db_session, new_account, subscription_factory):
        reconcile_subscription(lifecycle(subscription_factory(new_account.id, status="trialing")), db_session)
        db_session.refresh(new_account)
        assert new_account.subscription_tier == SubscriptionTier.PRO
        assert new_account.subscription_status == SubscriptionStatus.TRIALING

    @pytest.mark.parametrize("external,internal", [
        ("canceled", SubscriptionStatus.CANCELED),
        ("incomplete", SubscriptionStatus.INCOMPLETE),
        ("incomplete_expired", SubscriptionStatus.INCOMPLETE),
        ("unpaid", SubscriptionStatus.PAST_DUE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("paused", SubscriptionStatus.PAST_DUE),
    ])
    def test_non_entitled_statuses_drop_to_free(self, db_session, seller, subscription_factory, external, internal):
        reconcile_subscription(lifecycle(subscription_factory(seller.id, status=external)), db_session)

        db_session.refresh(seller)
        assert seller.subscription_tier == SubscriptionTier.FREE
        assert seller.subscription_status == internal

    def test_unknown_status_maps_to_none(self):
        assert map_subscription_status("brand_new_status") == SubscriptionStatus.NONE

    def test_deleted_event_downgrades(self, db_session, new_account, subscription_factory):
        reconcile_subscription(lifecycle(subscription_factory(new_account.id), event_id="evt_1"), db_session)
        reconcile_subscription(
            lifecycle(
                subscription_factory(new_account.id, status="canceled"),
                event_id="evt_2",
                event_type="customer.subscription.deleted",
            ),
            db_session,
        )
        db_session.refresh(new_account)
        assert new_account.subscription_tier == SubscriptionTier.FREE
        assert new_account.subscription_status == SubscriptionStatus.CANCELED
        assert db_session.query(SubscriptionEvent).count() == 2

    def test_older_update_after_delete_does_not_reactivate(self, db_session, seller, subscription_factory):
        deleted = lifecycle(
            subscription_factory(seller.id, status="canceled"),
            event_id="evt_2",
            event_type="customer.subscription.deleted",
            created=1700000200,
        )
        updated = lifecycle(subscription_factory(seller.id), event_id="evt_1", created=1700000100)

        assert reconcile_subscription(deleted, db_session) == "applied"
        assert reconcile_subscription(updated, db_session) == "stale"

        db_session.refresh(seller)
        assert seller.subscription_tier == SubscriptionTier.FREE
        assert seller.subscription_status == SubscriptionStatus.CANCELED
        assert seller.subscription_event_created == 1700000200
        assert db_session.query(SubscriptionEvent).count() == 2

    def test_newer_event_still_applies(self, db_session, new_account, subscription_factory):
        reconcile_subscription(
            lifecycle(subscription_factory(new_account.id, status="trialing"), event_id="evt_1", created=100),
            db_session,
        )
        outcome = reconcile_subscription(
            lifecycle(subscription_factory(new_account.id), event_id="evt_2", created=200), db_session
        )

        assert outcome == "applied"
        db_session.refresh(new_account)
        assert new_account.subscription_status == SubscriptionStatus.ACTIVE
        assert new_account.subscription_event_created == 200

    def test_late_cancel_of_replaced_subscription_is_ignored(self, db_session, new_account, subscription_factory):
        reconcile_subscription(
            lifecycle(subscription_factory(new_account.id, subscription_id="sub_new"), event_id="evt_new"),
            db_session,
        )
        outcome = reconcile_subscription(
            lifecycle(subscription_factory(new_account.id, status="canceled", subscription_id="sub_old"),
                      event_id="evt_old"),
            db_session,
        )

        assert outcome == "stale"
        db_session.refresh(new_account)
        assert new_account.subscription_external_id == "sub_new"
        assert new_account.subscription_tier == SubscriptionTier.PRO

    def test_missing_account_metadata_raises_correlation_missing(self, db_session, subscription_factory):
        subscription = subscription_factory(None, customer="cus_nobody")
        with pytest.raises(CorrelationMissing):
            reconcile_subscription(lifecycle(subscription), db_session)
        assert db_session.query(SubscriptionEvent).count() == 0

    def test_falls_back_to_customer_id(self, db_session, new_account, subscription_factory):
        new_account.stripe_customer_id = "cus_known"
        db_session.commit()

        reconcile_subscription(lifecycle(subscription_factory(None, customer="cus_known")), db_session)

        db_session.refresh(new_account)
        assert new_account.subscription_tier == SubscriptionTier.PRO


@pytest.mark.high
class TestSubscriptionCheckout:

    def test_creates_customer_and_session(self, db_session, new_account, auto_mock_stripe):
        auto_mock_stripe.checkout.Session.create.return_value = {"id": "cs_sub", "url": "https://checkout.stripe.com/sub"}

        url = start_subscription_checkout(db_session, new_account, "price_pro_monthly", "http://localhost:3000")

        assert url == "https://checkout.stripe.com/sub"
        db_session.refresh(new_account)
        assert new_account.stripe_customer_id == "cus_test123"
        kwargs = auto_mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["customer"] == "cus_test123"
        assert kwargs["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
        assert kwargs["subscription_data"]["metadata"] == {"account_id": new_account.id}
        assert kwargs["subscription_data"]["trial_period_days"] == 365

    def test_rejects_unknown_price(self, db_session, new_account, auto_mock_stripe):
        with pytest.raises(InvalidRequest):
            start_subscription_checkout(db_session, new_account, "price_free_lunch", "http://localhost:3000")
        auto_mock_stripe.checkout.Session.create.assert_not_called()

    def test_rejects_second_live_subscription(self, db_session, seller):
        seller.subscription_status = SubscriptionStatus.ACTIVE
        db_session.commit()
        with pytest.raises(Conflict):
            start_subscription_checkout(db_session, seller, "price_business_monthly", "http://localhost:3000")

    def test_no_trial_for_returning_subscriber(self, db_session, new_account, auto_mock_stripe):
        new_account.subscription_external_id = "sub_old"
        new_account.subscription_status = SubscriptionStatus.CANCELED
        db_session.commit()

        start_subscription_checkout(db_session, new_account, "price_pro_monthly", "http://localhost:3000")

        kwargs = auto_mock_stripe.checkout.Session.create.call_args.kwargs
        assert "trial_period_days" not in kwargs["subscription_data"]

    def test_portal_requires_customer(self, new_account):
        with pytest.raises(InvalidRequest):
            create_billing_portal_url(new_account, "http://localhost:3000")

    def test_portal_url(self, db_session, new_account, auto_mock_stripe):
        new_account.stripe_customer_id = "cus_test123"
        db_session.commit()
        assert create_billing_portal_url(new_account, "http://localhost:3000") == "https://billing.stripe.com/p/session/test"
        auto_mock_stripe.billing_portal.Session.create.assert_called_once_with(
            customer="cus_test123", return_url="http://localhost:3000/dashboard/billing"
        )
