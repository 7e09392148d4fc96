"""Checkout session initiation for marketplace purchases"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.errors import NotFound, SellerNotConnected, SellerNotReady
from lemons.models.account import Account, OnboardingStatus
from lemons.models.offer import Offer, Package
from lemons.services import stripe_service
from lemons.services.fees import calculate_platform_fee, lookup_fee_bps

logger = logging.getLogger(__name__)


def build_checkout_params(
    offer: Offer,
    package: Package,
    seller: Account,
    buyer: Optional[Account],
    fee_amount: int,
    origin: str,
) -> dict:
    """Stripe Checkout Session parameters for a destination charge.

    The correlation metadata is written to both the session and its payment
    intent; the order materializer reads it back from the completion event.
    """
    currency = (offer.currency_code or settings.DEFAULT_CURRENCY).upper()
    metadata = {
        "offer_id": offer.id,
        "package_id": package.id,
        "seller_id": seller.id,
        "buyer_id": buyer.id if buyer else "",
    }
    success_url = settings.STRIPE_CHECKOUT_SUCCESS_URL or f"{origin}/orders/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = settings.STRIPE_CHECKOUT_CANCEL_URL or f"{origin}/{offer.slug}"

    params = {
        "mode": "payment",
        "line_items": [{
            "price_data": {
                "currency": currency.lower(),
                "unit_amount": package.price_cents,
                "product_data": {"name": f"{offer.title} - {package.name}"},
            },
            "quantity": 1,
        }],
        "payment_intent_data": {
            "application_fee_amount": fee_amount,
            "transfer_data": {"destination": seller.external_payment_account_id},
            "metadata": metadata,
        },
        "metadata": metadata,
        "success_url": success_url,
        "cancel_url": cancel_url,
    }
    if buyer:
        params["client_reference_id"] = buyer.id
        if buyer.email:
            params["customer_email"] = buyer.email
    return params


def start_checkout(
    db: Session,
    offer_slug: str,
    package_id: str,
    buyer: Optional[Account],
    origin: str,
) -> str:
    """Create a Checkout Session for one package of an offer, return the redirect URL

    Raises:
        NotFound: offer or package does not exist
        SellerNotConnected: seller has no connected payment account
        SellerNotReady: seller's onboarding is not complete
        UpstreamUnavailable: Stripe refused or failed the session
    """
    offer = db.query(Offer).filter(Offer.slug == offer_slug).first()
    if not offer:
        raise NotFound("Offer not found")

    package = db.query(Package).filter(Package.id == package_id, Package.offer_id == offer.id).first()
    if not package:
        raise NotFound("Package not found")

    seller = offer.creator
    if not seller or not seller.external_payment_account_id:
        raise SellerNotConnected()
    if seller.onboarding_status != OnboardingStatus.COMPLETE:
        raise SellerNotReady()

    fee_bps = lookup_fee_bps(seller.id, db)
    fee_amount = calculate_platform_fee(package.price_cents, fee_bps)

    params = build_checkout_params(offer, package, seller, buyer, fee_amount, origin)
    session = stripe_service.create_checkout_session(params)

    logger.info(
        f"Checkout session {session['id']} for offer {offer.id} package {package.id}: "
        f"amount={package.price_cents}, fee={fee_amount} ({fee_bps} bps), buyer={buyer.id if buyer else 'guest'}"
    )
    return session["url"]
