"""Thin gateway over the Stripe SDK.

Every outbound call to Stripe goes through this module so that SDK errors
are translated into ``UpstreamUnavailable`` in one place. No retries here:
webhook handlers rely on Stripe's redelivery, user-facing initiators let
the caller try again.
"""
import logging
import stripe
from typing import Any, Dict, Optional

from lemons.core.config import settings
from lemons.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    # Stripe objects
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, key, default)
    return default if value is None else value


# ============================================================================
# PAYMENTS
# ============================================================================

def retrieve_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    """Fetch settlement status and the applied platform fee of a payment intent"""
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        logger.error(f"Could not retrieve payment intent {payment_intent_id}: {e}")
        raise UpstreamUnavailable(f"Could not retrieve payment intent {payment_intent_id}") from e

    return {
        "id": get_stripe_value(intent, "id", payment_intent_id),
        "status": get_stripe_value(intent, "status"),
        "amount": get_stripe_value(intent, "amount"),
        "currency": get_stripe_value(intent, "currency"),
        "application_fee_amount": get_stripe_value(intent, "application_fee_amount"),
    }


def create_checkout_session(params: Dict[str, Any]) -> Dict[str, Any]:
    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Error creating checkout session: {e}")
        raise UpstreamUnavailable("Unable to start checkout") from e
    return {"id": get_stripe_value(session, "id"), "url": get_stripe_value(session, "url")}


# ============================================================================
# CONNECT (seller accounts)
# ============================================================================

def create_connected_account(email: Optional[str], country: Optional[str], account_id: str) -> str:
    """Create an Express-dashboard connected account, return its id"""
    params = {
        "controller": {
            "fees": {"payer": "application"},
            "losses": {"payments": "application"},
            "stripe_dashboard": {"type": "express"},
        },
        "capabilities": {
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        },
        "metadata": {"account_id": account_id},
    }
    if email:
        params["email"] = email
    if country:
        params["country"] = country

    try:
        account = stripe.Account.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Error creating connected account for {account_id}: {e}")
        raise UpstreamUnavailable("Unable to start Stripe onboarding") from e
    return get_stripe_value(account, "id")


def retrieve_connected_account(stripe_account_id: str) -> Dict[str, Any]:
    """Fetch the capability flags of a connected account"""
    try:
        account = stripe.Account.retrieve(stripe_account_id)
    except stripe.StripeError as e:
        logger.error(f"Could not retrieve connected account {stripe_account_id}: {e}")
        raise UpstreamUnavailable(f"Could not retrieve connected account {stripe_account_id}") from e

    return {
        "id": get_stripe_value(account, "id", stripe_account_id),
        "charges_enabled": bool(get_stripe_value(account, "charges_enabled", False)),
        "payouts_enabled": bool(get_stripe_value(account, "payouts_enabled", False)),
        "details_submitted": bool(get_stripe_value(account, "details_submitted", False)),
    }


def create_account_link(stripe_account_id: str, refresh_url: str, return_url: str) -> str:
    """Hosted onboarding links are short-lived; create a fresh one per visit"""
    try:
        link = stripe.AccountLink.create(
            account=stripe_account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
            collection_options={"fields": "eventually_due"},
        )
    except stripe.StripeError as e:
        logger.error(f"Error creating account link for {stripe_account_id}: {e}")
        raise UpstreamUnavailable("Unable to start Stripe onboarding") from e
    return get_stripe_value(link, "url")


def create_login_link(stripe_account_id: str) -> str:
    """Express dashboard login link"""
    try:
        link = stripe.Account.create_login_link(stripe_account_id)
    except stripe.StripeError as e:
        logger.error(f"Error creating login link for {stripe_account_id}: {e}")
        raise UpstreamUnavailable("Unable to open the Stripe dashboard") from e
    return get_stripe_value(link, "url")


# ============================================================================
# BILLING (seller subscriptions)
# ============================================================================

def create_customer(email: Optional[str], account_id: str) -> str:
    try:
        customer = stripe.Customer.create(email=email, metadata={"account_id": account_id})
    except stripe.StripeError as e:
        logger.error(f"Error creating Stripe customer for {account_id}: {e}")
        raise UpstreamUnavailable("Unable to start subscription checkout") from e
    return get_stripe_value(customer, "id")


def create_subscription_checkout_session(
    customer_id: str,
    price_id: str,
    account_id: str,
    success_url: str,
    cancel_url: str,
    trial_days: int = 0
) -> Dict[str, Any]:
    subscription_data = {"metadata": {"account_id": account_id}}
    if trial_days > 0:
        subscription_data["trial_period_days"] = trial_days

    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            subscription_data=subscription_data,
            payment_method_collection="always",
            metadata={"account_id": account_id},
        )
    except stripe.StripeError as e:
        logger.error(f"Error creating subscription checkout for {account_id}: {e}")
        raise UpstreamUnavailable("Unable to start subscription checkout") from e
    return {"id": get_stripe_value(session, "id"), "url": get_stripe_value(session, "url")}


def create_billing_portal_session(customer_id: str, return_url: str) -> str:
    try:
        session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
    except stripe.StripeError as e:
        logger.error(f"Error creating portal session for {customer_id}: {e}")
        raise UpstreamUnavailable("Unable to open billing portal") from e
    return get_stripe_value(session, "url")
