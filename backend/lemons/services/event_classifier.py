"""Classify verified webhook events and decode them per event family"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError

from lemons.schemas.events import (
    CheckoutSessionObject, ConnectedAccountObject, StripeEventEnvelope, SubscriptionObject
)

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("reconciliation")


class EventFamily(str, enum.Enum):
    ACCOUNT_STATUS = "account_status"
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_LIFECYCLE = "subscription_lifecycle"
    UNHANDLED = "unhandled"


# Older snapshot name and newer thin-event name for the same notification
ACCOUNT_STATUS_TYPES = frozenset({
    "account.updated",
    "v2.core.account.updated",
})

CHECKOUT_SUCCEEDED_TYPES = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})
CHECKOUT_FAILED_TYPES = frozenset({
    "checkout.session.async_payment_failed",
})

SUBSCRIPTION_TYPES = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
})

# Prefixes of families we handle; an unclassified type starting with one of
# these may be a new variant we should be reconciling.
_FAMILY_PREFIXES = ("account.", "v2.core.account", "checkout.session.", "customer.subscription.")


def classify(event_type: str) -> EventFamily:
    """Map a Stripe event type string to its internal family"""
    if event_type in ACCOUNT_STATUS_TYPES:
        return EventFamily.ACCOUNT_STATUS
    if event_type in CHECKOUT_SUCCEEDED_TYPES or event_type in CHECKOUT_FAILED_TYPES:
        return EventFamily.CHECKOUT_COMPLETED
    if event_type in SUBSCRIPTION_TYPES:
        return EventFamily.SUBSCRIPTION_LIFECYCLE
    return EventFamily.UNHANDLED


def resembles_known_family(event_type: str) -> bool:
    return event_type.startswith(_FAMILY_PREFIXES)


@dataclass(frozen=True)
class CapabilityFlags:
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


@dataclass(frozen=True)
class AccountStatusEvent:
    event_id: str
    event_type: str
    stripe_account_id: str
    flags: Optional[CapabilityFlags]  # None for thin events; fetch the account


@dataclass(frozen=True)
class CheckoutCompletedEvent:
    event_id: str
    event_type: str
    session: CheckoutSessionObject

    @property
    def payment_failed(self) -> bool:
        return self.event_type in CHECKOUT_FAILED_TYPES


@dataclass(frozen=True)
class SubscriptionLifecycleEvent:
    event_id: str
    event_type: str
    subscription: SubscriptionObject
    created: Optional[int] = None  # envelope creation time, orders deliveries


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str
    reason: str


DecodedEvent = Union[AccountStatusEvent, CheckoutCompletedEvent, SubscriptionLifecycleEvent, UnhandledEvent]


def _decode_account_status(envelope: StripeEventEnvelope) -> AccountStatusEvent:
    obj = envelope.data_object()
    if obj is not None:
        account = ConnectedAccountObject.model_validate(obj)
        return AccountStatusEvent(
            event_id=envelope.id,
            event_type=envelope.type,
            stripe_account_id=account.id,
            flags=CapabilityFlags(
                charges_enabled=account.charges_enabled,
                payouts_enabled=account.payouts_enabled,
                details_submitted=account.details_submitted,
            ),
        )

    related_id = (envelope.related_object or {}).get("id")
    if not related_id:
        raise ValueError("account event carries neither an account snapshot nor a related object")
    return AccountStatusEvent(
        event_id=envelope.id,
        event_type=envelope.type,
        stripe_account_id=related_id,
        flags=None,
    )


def decode_event(envelope: StripeEventEnvelope) -> DecodedEvent:
    """Decode a verified envelope into its family's shape.

    Never raises: a payload that does not fit its family's shape decodes to
    UnhandledEvent, which the pipeline acknowledges without side effects.
    """
    family = classify(envelope.type)

    try:
        if family is EventFamily.ACCOUNT_STATUS:
            return _decode_account_status(envelope)

        if family is EventFamily.CHECKOUT_COMPLETED:
            session = CheckoutSessionObject.model_validate(envelope.data_object() or {})
            return CheckoutCompletedEvent(event_id=envelope.id, event_type=envelope.type, session=session)

        if family is EventFamily.SUBSCRIPTION_LIFECYCLE:
            subscription = SubscriptionObject.model_validate(envelope.data_object() or {})
            return SubscriptionLifecycleEvent(
                event_id=envelope.id, event_type=envelope.type, subscription=subscription,
                created=envelope.created,
            )
    except (ValidationError, ValueError) as e:
        reconciliation_logger.warning(
            f"Event {envelope.id} of type {envelope.type} does not match the {family.value} shape: {e}"
        )
        return UnhandledEvent(event_id=envelope.id, event_type=envelope.type, reason="malformed")

    if resembles_known_family(envelope.type):
        reconciliation_logger.warning(
            f"Unhandled event type {envelope.type} ({envelope.id}) resembles a reconciled family"
        )
        return UnhandledEvent(event_id=envelope.id, event_type=envelope.type, reason="unknown_variant")

    logger.info(f"Ignoring unhandled event type {envelope.type} ({envelope.id})")
    return UnhandledEvent(event_id=envelope.id, event_type=envelope.type, reason="unhandled")
