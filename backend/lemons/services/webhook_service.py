"""Webhook pipeline: verify, decode, dispatch"""
import logging
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.errors import CorrelationMissing, UpstreamUnavailable
from lemons.core.metrics import webhook_events_counter
from lemons.core.otel import tracer
from lemons.schemas.events import StripeEventEnvelope
from lemons.services.event_classifier import (
    AccountStatusEvent, CheckoutCompletedEvent, EventFamily, SubscriptionLifecycleEvent,
    classify, decode_event
)
from lemons.services.onboarding import apply_account_status_event
from lemons.services.order_service import handle_checkout_event
from lemons.services.subscription_service import reconcile_subscription
from lemons.services.webhook_verifier import SignatureVerifier

webhook_logger = logging.getLogger("webhooks")


def _ack(event_id: Optional[str], family: EventFamily, status: str) -> Dict[str, Any]:
    webhook_events_counter.labels(family=family.value, outcome=status).inc()
    webhook_logger.info(f"Webhook {event_id} ({family.value}): {status}")
    return {"received": True, "event_id": event_id, "family": family.value, "status": status}


def process_webhook(
    payload: bytes,
    sig_header: Optional[str],
    db: Session,
    secrets: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Authenticate and reconcile one webhook delivery.

    Returns:
        Acknowledgment body; every classified event, including unhandled
        ones, is acknowledged

    Raises:
        AuthenticationFailure: signature did not verify (rejected with 400)
        UpstreamUnavailable: a Stripe lookup failed; not acknowledged so
            Stripe redelivers
    """
    verifier = SignatureVerifier(
        settings.webhook_secrets() if secrets is None else secrets,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )
    try:
        envelope = verifier.verify(payload, sig_header)
    except Exception:
        webhook_events_counter.labels(family="unknown", outcome="rejected").inc()
        raise

    if envelope is None:
        return _ack(None, EventFamily.UNHANDLED, "unhandled")

    family = classify(envelope.type)
    with tracer.start_as_current_span("webhook.dispatch") as span:
        span.set_attribute("stripe.event_id", envelope.id)
        span.set_attribute("stripe.event_type", envelope.type)
        ack = _dispatch(envelope, family, db)
        span.set_attribute("webhook.status", ack["status"])
    return ack


def _dispatch(envelope: StripeEventEnvelope, family: EventFamily, db: Session) -> Dict[str, Any]:
    event = decode_event(envelope)

    try:
        if isinstance(event, AccountStatusEvent):
            status = apply_account_status_event(event, db)
            return _ack(envelope.id, family, "processed" if status else "ignored")

        if isinstance(event, CheckoutCompletedEvent):
            order = handle_checkout_event(event, db)
            return _ack(envelope.id, family, "processed" if order else "ignored")

        if isinstance(event, SubscriptionLifecycleEvent):
            outcome = reconcile_subscription(event, db)
            return _ack(envelope.id, family, "processed" if outcome == "applied" else outcome)
    except CorrelationMissing as e:
        # Redelivery can never fix a missing correlation; acknowledge it
        webhook_logger.warning(f"Webhook {envelope.id} ({envelope.type}) acknowledged without changes: {e.message}")
        return _ack(envelope.id, family, "ignored")
    except UpstreamUnavailable:
        webhook_events_counter.labels(family=family.value, outcome="retry").inc()
        webhook_logger.warning(f"Webhook {envelope.id} ({envelope.type}) not acknowledged: upstream unavailable")
        raise

    return _ack(envelope.id, EventFamily.UNHANDLED, "unhandled")
