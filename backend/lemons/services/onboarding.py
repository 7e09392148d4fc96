"""Seller onboarding status derivation.

State machine::

    not_connected --start--> pending --details submitted--> pending_verification
        --charges and payouts enabled--> complete

Derived updates only ever move forward. The explicit reset in
connect_service is the single backward transition.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from lemons.models.account import Account, OnboardingStatus
from lemons.services import stripe_service
from lemons.services.account_service import get_account_by_stripe_account_id
from lemons.services.event_classifier import AccountStatusEvent, CapabilityFlags

logger = logging.getLogger(__name__)


def resolve_onboarding_status(charges_enabled: bool, payouts_enabled: bool, details_submitted: bool) -> str:
    """Derive the onboarding status from a connected account's capability flags"""
    if charges_enabled and payouts_enabled:
        return OnboardingStatus.COMPLETE
    if details_submitted:
        return OnboardingStatus.PENDING_VERIFICATION
    return OnboardingStatus.PENDING


def status_rank(status: Optional[str]) -> int:
    try:
        return OnboardingStatus.ORDER.index(status)
    except ValueError:
        return 0


def advance_onboarding_status(current: Optional[str], resolved: str) -> str:
    """The later of two statuses; derived updates never move backward"""
    return resolved if status_rank(resolved) > status_rank(current) else (current or resolved)


def advance_account_onboarding(db: Session, account_id: str, stripe_account_id: str, resolved: str) -> bool:
    """Atomically move an account forward to ``resolved``.

    The UPDATE only matches rows that are still linked to ``stripe_account_id``
    and sit strictly below ``resolved``, so concurrent deliveries and a reset
    racing with a webhook cannot move the status backward or re-link it.

    Returns:
        True if the row changed
    """
    lower = [s for s in OnboardingStatus.ORDER if status_rank(s) < status_rank(resolved)]
    if not lower:
        return False

    changed = (
        db.query(Account)
        .filter(
            Account.id == account_id,
            Account.external_payment_account_id == stripe_account_id,
            Account.onboarding_status.in_(lower),
        )
        .update(
            {
                Account.onboarding_status: resolved,
                Account.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return changed > 0


def capability_flags_for(stripe_account_id: str) -> CapabilityFlags:
    account = stripe_service.retrieve_connected_account(stripe_account_id)
    return CapabilityFlags(
        charges_enabled=account["charges_enabled"],
        payouts_enabled=account["payouts_enabled"],
        details_submitted=account["details_submitted"],
    )


def apply_account_status_event(event: AccountStatusEvent, db: Session) -> Optional[str]:
    """Refresh a seller's onboarding status from an account-status event.

    An event for an account we do not know (deleted, or linkage not yet
    persisted) is a no-op; its only purpose is to refresh known state.

    Returns:
        The account's onboarding status after the update, or None if no
        local account matched
    """
    account = get_account_by_stripe_account_id(event.stripe_account_id, db)
    if not account:
        logger.info(
            f"No local account for connected account {event.stripe_account_id} "
            f"(event {event.event_id}); nothing to update"
        )
        return None

    # Thin events carry no snapshot; UpstreamUnavailable propagates so Stripe redelivers
    flags = event.flags or capability_flags_for(event.stripe_account_id)
    resolved = resolve_onboarding_status(flags.charges_enabled, flags.payouts_enabled, flags.details_submitted)

    if advance_account_onboarding(db, account.id, event.stripe_account_id, resolved):
        logger.info(f"Account {account.id} onboarding status -> {resolved} (event {event.event_id})")
    else:
        logger.info(
            f"Account {account.id} onboarding status unchanged at {account.onboarding_status} "
            f"(event {event.event_id} resolved {resolved})"
        )

    db.refresh(account)
    return account.onboarding_status
