"""Seller subscription tier reconciliation and billing initiators"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.errors import Conflict, CorrelationMissing, InvalidRequest
from lemons.core.metrics import subscription_reconciliations_counter
from lemons.db.helpers import conflict_insert
from lemons.models.account import Account, SubscriptionStatus, SubscriptionTier
from lemons.models.subscription_event import SubscriptionEvent
from lemons.services import stripe_service
from lemons.services.account_service import get_account
from lemons.services.event_classifier import SubscriptionLifecycleEvent

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("reconciliation")

# Stripe subscription status -> internal status. Terminal failures collapse
# into the same bucket; the distinction does not matter to tier logic.
STATUS_MAP: Dict[str, str] = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}

ENTITLED_STATUSES = ("active", "trialing")

# Internal statuses under which a seller still has a live paid subscription
LIVE_STATUSES = (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)


def tier_for_product(product_id: Optional[str]) -> Optional[str]:
    tiers = {
        settings.STRIPE_PRO_PRODUCT_ID: SubscriptionTier.PRO,
        settings.STRIPE_BUSINESS_PRODUCT_ID: SubscriptionTier.BUSINESS,
    }
    tiers.pop("", None)
    return tiers.get(product_id) if product_id else None


def map_subscription_status(external_status: str) -> str:
    status = STATUS_MAP.get(external_status)
    if status is None:
        reconciliation_logger.warning(f"Unknown subscription status {external_status!r}, treating as none")
        return SubscriptionStatus.NONE
    return status


def target_tier(external_status: str, product_id: Optional[str], subscription_id: str) -> str:
    """Tier a subscription in this state entitles its owner to"""
    if external_status not in ENTITLED_STATUSES:
        return SubscriptionTier.FREE
    tier = tier_for_product(product_id)
    if tier is None:
        reconciliation_logger.warning(
            f"Subscription {subscription_id} references unknown product {product_id!r}; granting free tier"
        )
        return SubscriptionTier.FREE
    return tier


def _owning_account(event: SubscriptionLifecycleEvent, db: Session) -> Account:
    subscription = event.subscription
    account_id = subscription.metadata.get("account_id")
    account = get_account(account_id, db) if account_id else None
    if account is None and subscription.customer:
        account = db.query(Account).filter(Account.stripe_customer_id == subscription.customer).first()
    if account is None:
        reconciliation_logger.error(
            f"Subscription {subscription.id} (event {event.event_id}) has no owning account: "
            f"metadata account_id={account_id!r}, customer={subscription.customer!r}"
        )
        raise CorrelationMissing(f"Subscription {subscription.id} has no owning account")
    return account


def reconcile_subscription(event: SubscriptionLifecycleEvent, db: Session) -> str:
    """Apply a subscription lifecycle event to its owning account.

    The audit row is inserted first with ON CONFLICT (external_event_id) DO
    NOTHING; if no row was inserted the event was already processed and the
    account is left alone. Audit row and account update commit together.

    Returns:
        "applied", "duplicate", or "stale" (event older than the last applied
        one, or for a subscription the account has since replaced; audited,
        account untouched)

    Raises:
        CorrelationMissing: no owning account can be found
    """
    subscription = event.subscription
    account = _owning_account(event, db)

    new_tier = target_tier(subscription.status, subscription.product_id, subscription.id)
    new_status = map_subscription_status(subscription.status)
    previous_tier = account.subscription_tier

    inserted = db.execute(
        conflict_insert(db, SubscriptionEvent)
        .values(
            account_id=account.id,
            external_event_id=event.event_id,
            event_type=event.event_type,
            external_subscription_id=subscription.id,
            product_id=subscription.product_id,
            previous_tier=previous_tier,
            new_tier=new_tier,
            external_status=subscription.status,
            internal_status=new_status,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=[SubscriptionEvent.external_event_id])
    )
    if inserted.rowcount == 0:
        db.rollback()
        logger.info(f"Subscription event {event.event_id} already processed")
        subscription_reconciliations_counter.labels(outcome="duplicate").inc()
        return "duplicate"

    # A late event for a replaced subscription must not downgrade the live one
    if (
        account.subscription_external_id
        and account.subscription_external_id != subscription.id
        and account.subscription_status in LIVE_STATUSES
        and new_status not in LIVE_STATUSES
    ):
        db.commit()
        logger.info(
            f"Ignoring {event.event_type} for replaced subscription {subscription.id}; "
            f"account {account.id} is on {account.subscription_external_id}"
        )
        subscription_reconciliations_counter.labels(outcome="stale").inc()
        return "stale"

    period_end = subscription.period_end
    query = db.query(Account).filter(Account.id == account.id)
    if event.created is not None:
        # Deliveries are unordered; never apply an event older than the last one applied
        query = query.filter(or_(
            Account.subscription_event_created.is_(None),
            Account.subscription_event_created <= event.created,
        ))
    updated = query.update(
        {
            Account.subscription_tier: new_tier,
            Account.subscription_status: new_status,
            Account.subscription_external_id: subscription.id,
            Account.subscription_current_period_end: (
                datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None
            ),
            Account.subscription_cancel_at_period_end: subscription.cancel_at_period_end,
            Account.stripe_customer_id: func.coalesce(Account.stripe_customer_id, subscription.customer),
            Account.subscription_event_created: func.coalesce(event.created, Account.subscription_event_created),
            Account.updated_at: datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )
    db.commit()

    if updated == 0:
        logger.info(
            f"Ignoring out-of-order {event.event_type} {event.event_id} for account {account.id}; "
            f"a newer subscription event was already applied"
        )
        subscription_reconciliations_counter.labels(outcome="stale").inc()
        return "stale"

    logger.info(
        f"Account {account.id} subscription {subscription.id}: {previous_tier} -> {new_tier} "
        f"({subscription.status} -> {new_status}, event {event.event_id})"
    )
    subscription_reconciliations_counter.labels(outcome="applied").inc()
    return "applied"


# ============================================================================
# BILLING INITIATORS
# ============================================================================

def _ensure_customer(account: Account, db: Session) -> str:
    if account.stripe_customer_id:
        return account.stripe_customer_id

    customer_id = stripe_service.create_customer(account.email, account.id)
    changed = (
        db.query(Account)
        .filter(Account.id == account.id, Account.stripe_customer_id.is_(None))
        .update({Account.stripe_customer_id: customer_id}, synchronize_session=False)
    )
    db.commit()
    db.refresh(account)
    if not changed:
        logger.warning(
            f"Account {account.id} gained customer {account.stripe_customer_id} concurrently; "
            f"customer {customer_id} is unused"
        )
    return account.stripe_customer_id


def start_subscription_checkout(db: Session, account: Account, price_id: str, origin: str) -> str:
    """Start a Stripe Checkout for a seller subscription, return its URL

    Raises:
        InvalidRequest: price id is not one of the configured plans
        Conflict: the seller already has a live paid subscription
    """
    if price_id not in settings.subscription_price_ids():
        raise InvalidRequest(f"Unknown subscription price: {price_id}")

    if account.subscription_tier != SubscriptionTier.FREE and account.subscription_status in LIVE_STATUSES:
        raise Conflict("You already have an active subscription. Manage it from the billing portal.")

    customer_id = _ensure_customer(account, db)

    # Introductory trial only for sellers who never subscribed before
    trial_days = settings.SUBSCRIPTION_TRIAL_DAYS if not account.subscription_external_id else 0

    session = stripe_service.create_subscription_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        account_id=account.id,
        success_url=f"{origin}/dashboard/billing?checkout=success",
        cancel_url=f"{origin}/dashboard/billing",
        trial_days=trial_days,
    )
    logger.info(f"Subscription checkout {session['id']} started for account {account.id} (price {price_id})")
    return session["url"]


def create_billing_portal_url(account: Account, origin: str) -> str:
    if not account.stripe_customer_id:
        raise InvalidRequest("No billing account yet. Subscribe to a plan first.")
    return stripe_service.create_billing_portal_session(account.stripe_customer_id, f"{origin}/dashboard/billing")
