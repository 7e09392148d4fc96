"""Stripe Connect onboarding for sellers"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.errors import PartialFailure, SellerNotConnected
from lemons.models.account import Account, OnboardingStatus
from lemons.services import stripe_service
from lemons.services.onboarding import advance_account_onboarding, resolve_onboarding_status

logger = logging.getLogger(__name__)


def _link_connected_account(db: Session, account: Account, stripe_account_id: str) -> None:
    """Store a freshly created connected account id on the seller.

    The write only succeeds while the seller has no linked account. Any
    failure leaves a Stripe account that nothing points to; that is surfaced
    as PartialFailure and never retried here, since a retry would create a
    second Stripe account.
    """
    try:
        changed = (
            db.query(Account)
            .filter(Account.id == account.id, Account.external_payment_account_id.is_(None))
            .update(
                {
                    Account.external_payment_account_id: stripe_account_id,
                    Account.onboarding_status: OnboardingStatus.PENDING,
                    Account.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.critical(
            f"Connected account {stripe_account_id} created for {account.id} but could not be stored: {e}",
            exc_info=True,
        )
        raise PartialFailure(
            "Stripe account was created but could not be saved. Please contact support.",
            external_id=stripe_account_id,
        ) from e

    if not changed:
        logger.critical(
            f"Connected account {stripe_account_id} created for {account.id} but the seller was linked "
            f"concurrently; {stripe_account_id} is orphaned"
        )
        raise PartialFailure(
            "Stripe onboarding was started twice. Please contact support.",
            external_id=stripe_account_id,
        )
    db.refresh(account)


def start_onboarding(db: Session, account: Account, origin: str) -> str:
    """Get or create the seller's Express account and return a fresh onboarding link

    Raises:
        UpstreamUnavailable: Stripe failed to create the account or the link
        PartialFailure: account created at Stripe but not stored locally
    """
    stripe_account_id = account.external_payment_account_id
    if not stripe_account_id:
        stripe_account_id = stripe_service.create_connected_account(account.email, account.country, account.id)
        logger.info(f"Created connected account {stripe_account_id} for {account.id}")
        _link_connected_account(db, account, stripe_account_id)

    refresh_url = settings.STRIPE_CONNECT_REFRESH_URL or f"{origin}/dashboard/payouts?refresh=1"
    return_url = settings.STRIPE_CONNECT_RETURN_URL or f"{origin}/dashboard/payouts?return=1"
    return stripe_service.create_account_link(stripe_account_id, refresh_url, return_url)


def refresh_onboarding_status(db: Session, account: Account) -> Dict[str, Any]:
    """Re-read the connected account from Stripe and re-derive the onboarding status.

    Fallback for delayed or missed account webhooks. Follows the same
    forward-only rule as the webhook path.
    """
    stripe_account_id = account.external_payment_account_id
    if not stripe_account_id:
        return {
            "status": OnboardingStatus.NOT_CONNECTED,
            "stripe_account_id": None,
            "charges_enabled": False,
            "payouts_enabled": False,
            "details_submitted": False,
        }

    flags = stripe_service.retrieve_connected_account(stripe_account_id)
    resolved = resolve_onboarding_status(flags["charges_enabled"], flags["payouts_enabled"], flags["details_submitted"])
    if advance_account_onboarding(db, account.id, stripe_account_id, resolved):
        logger.info(f"Account {account.id} onboarding status -> {resolved} (status refresh)")
    db.refresh(account)

    return {
        "status": account.onboarding_status,
        "stripe_account_id": account.external_payment_account_id,
        "charges_enabled": flags["charges_enabled"],
        "payouts_enabled": flags["payouts_enabled"],
        "details_submitted": flags["details_submitted"],
    }


def reset_onboarding(db: Session, account: Account) -> Account:
    """Unlink the seller's connected account so they can onboard again.

    The only transition that moves onboarding backward. Country, subscription
    and order history are kept; the Stripe account itself is left in place.
    """
    previous = account.external_payment_account_id
    db.query(Account).filter(Account.id == account.id).update(
        {
            Account.external_payment_account_id: None,
            Account.onboarding_status: OnboardingStatus.NOT_CONNECTED,
            Account.updated_at: datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )
    db.commit()
    db.refresh(account)
    logger.info(f"Account {account.id} reset onboarding (unlinked {previous})")
    return account


def create_dashboard_link(account: Account) -> str:
    """Express dashboard login link for a connected seller"""
    if not account.external_payment_account_id:
        raise SellerNotConnected("Connect a Stripe account first")
    return stripe_service.create_login_link(account.external_payment_account_id)
