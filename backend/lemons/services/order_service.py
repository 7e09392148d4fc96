"""Order materialization from checkout completion events, and order fulfilment"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from lemons.core.errors import Conflict, CorrelationMissing, Forbidden, NotFound
from lemons.core.metrics import orders_materialized_counter
from lemons.db.helpers import conflict_insert
from lemons.models.account import Account
from lemons.models.offer import Offer, Package
from lemons.models.order import FulfillmentStatus, Order, OrderStatus
from lemons.services import stripe_service
from lemons.services.event_classifier import CheckoutCompletedEvent
from lemons.services.fees import calculate_platform_fee, lookup_fee_bps

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("reconciliation")

# Session payment_status values that mean nothing is left to collect
SETTLED_SESSION_STATUSES = ("paid", "no_payment_required")


def get_order_by_session_id(session_id: str, db: Session) -> Optional[Order]:
    return db.query(Order).filter(Order.checkout_session_id == session_id).first()


def _settlement(payment_intent_id: Optional[str], payment_status: Optional[str], failed: bool):
    """Authoritative (status, applied fee, amount, currency) for a completion.

    The payment intent is the source of truth: the fee is set on the intent,
    not the session, so the session's nominal amounts are only a fallback.
    """
    if failed:
        return OrderStatus.FAILED, None, None, None

    if not payment_intent_id:
        # No intent (e.g. fully discounted); the session's own status is all we have
        status = OrderStatus.PAID if payment_status in SETTLED_SESSION_STATUSES else OrderStatus.PENDING
        return status, None, None, None

    intent = stripe_service.retrieve_payment_intent(payment_intent_id)
    status = OrderStatus.PAID if intent["status"] == "succeeded" else OrderStatus.PENDING
    return status, intent["application_fee_amount"], intent["amount"], intent["currency"]


def materialize_order(
    db: Session,
    session_id: str,
    seller_id: str,
    offer_id: str,
    package_id: str,
    buyer_id: Optional[str],
    buyer_email: Optional[str],
    amount_total: Optional[int],
    currency: Optional[str],
    payment_intent_id: Optional[str],
    payment_status: Optional[str] = None,
    failed: bool = False,
) -> Order:
    """Create or update the order for a checkout session.

    A single INSERT ... ON CONFLICT (checkout_session_id) DO UPDATE, so
    repeated and concurrent deliveries for the same session converge on one
    row. Status only moves forward: paid is never overwritten, and failed is
    only accepted while the order is still pending.

    Raises:
        UpstreamUnavailable: the payment intent could not be fetched
    """
    status, fee, intent_amount, intent_currency = _settlement(payment_intent_id, payment_status, failed)
    amount = amount_total if amount_total is not None else intent_amount
    currency = (currency or intent_currency or "").upper() or None
    now = datetime.now(timezone.utc)

    stmt = conflict_insert(db, Order).values(
        id=str(uuid.uuid4()),
        checkout_session_id=session_id,
        payment_intent_id=payment_intent_id,
        buyer_id=buyer_id,
        buyer_email=buyer_email,
        seller_id=seller_id,
        offer_id=offer_id,
        package_id=package_id,
        amount_total=amount,
        currency=currency,
        platform_fee_amount=fee,
        status=status,
        fulfillment_status=FulfillmentStatus.UNFULFILLED,
        created_at=now,
        updated_at=now,
    )
    incoming = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[Order.checkout_session_id],
        set_={
            "status": case(
                (Order.status == OrderStatus.PAID, Order.status),
                (incoming.status == OrderStatus.PAID, incoming.status),
                (and_(incoming.status == OrderStatus.FAILED, Order.status == OrderStatus.PENDING), incoming.status),
                else_=Order.status,
            ),
            "payment_intent_id": func.coalesce(incoming.payment_intent_id, Order.payment_intent_id),
            "buyer_id": func.coalesce(incoming.buyer_id, Order.buyer_id),
            "buyer_email": func.coalesce(incoming.buyer_email, Order.buyer_email),
            "amount_total": func.coalesce(incoming.amount_total, Order.amount_total),
            "currency": func.coalesce(incoming.currency, Order.currency),
            "platform_fee_amount": func.coalesce(incoming.platform_fee_amount, Order.platform_fee_amount),
            "updated_at": incoming.updated_at,
        },
    )
    db.execute(stmt)
    db.commit()

    order = get_order_by_session_id(session_id, db)
    db.refresh(order)
    orders_materialized_counter.labels(status=order.status).inc()
    logger.info(f"Materialized order {order.id} for session {session_id}: status={order.status}, fee={order.platform_fee_amount}")
    return order


def _check_fee_drift(order: Order, db: Session) -> None:
    """Compare the fee that settled against the seller's current rate.

    Settlement data wins; a mismatch (e.g. the seller changed tier between
    checkout and payment) is only logged for review.
    """
    if order.platform_fee_amount is None or order.amount_total is None:
        return
    expected = calculate_platform_fee(order.amount_total, lookup_fee_bps(order.seller_id, db))
    if expected != order.platform_fee_amount:
        reconciliation_logger.warning(
            f"Fee drift on order {order.id}: applied {order.platform_fee_amount}, "
            f"current rate gives {expected} (seller {order.seller_id})"
        )


def handle_checkout_event(event: CheckoutCompletedEvent, db: Session) -> Optional[Order]:
    """Materialize the order behind a checkout completion event.

    Returns:
        The order, or None for sessions this service does not own
        (subscription checkouts are reconciled from subscription events)

    Raises:
        CorrelationMissing: the session metadata does not identify a seller,
            offer and package we know
    """
    session = event.session
    if session.mode == "subscription":
        logger.info(f"Checkout session {session.id} is a subscription checkout; no order to materialize")
        return None

    metadata = session.metadata
    seller_id = metadata.get("seller_id")
    offer_id = metadata.get("offer_id")
    package_id = metadata.get("package_id")
    if not (seller_id and offer_id and package_id):
        reconciliation_logger.error(
            f"Checkout session {session.id} (event {event.event_id}) is missing order metadata: "
            f"seller_id={seller_id!r}, offer_id={offer_id!r}, package_id={package_id!r}"
        )
        raise CorrelationMissing(f"Checkout session {session.id} has no order metadata")

    package = (
        db.query(Package)
        .join(Offer, Package.offer_id == Offer.id)
        .filter(Package.id == package_id, Offer.id == offer_id, Offer.creator_id == seller_id)
        .first()
    )
    if package is None:
        reconciliation_logger.error(
            f"Checkout session {session.id} (event {event.event_id}) references unknown "
            f"seller/offer/package {seller_id}/{offer_id}/{package_id}"
        )
        raise CorrelationMissing(f"Checkout session {session.id} references an unknown offer")

    buyer_id = metadata.get("buyer_id") or session.client_reference_id or None
    if buyer_id and db.query(Account.id).filter(Account.id == buyer_id).scalar() is None:
        logger.warning(f"Checkout session {session.id} buyer {buyer_id} no longer exists; recording as guest")
        buyer_id = None

    order = materialize_order(
        db,
        session_id=session.id,
        seller_id=seller_id,
        offer_id=offer_id,
        package_id=package_id,
        buyer_id=buyer_id,
        buyer_email=session.buyer_email,
        amount_total=session.amount_total,
        currency=session.currency,
        payment_intent_id=session.payment_intent,
        payment_status=session.payment_status,
        failed=event.payment_failed,
    )
    _check_fee_drift(order, db)
    return order


def mark_order_delivered(order_id: str, seller_id: str, delivery_message: Optional[str], db: Session) -> Order:
    """Seller marks a paid order as delivered. Delivered is terminal."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    if order.seller_id != seller_id:
        raise Forbidden("Only the seller can deliver this order")

    changed = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == OrderStatus.PAID,
            Order.fulfillment_status == FulfillmentStatus.UNFULFILLED,
        )
        .update(
            {
                Order.fulfillment_status: FulfillmentStatus.DELIVERED,
                Order.delivery_message: delivery_message,
                Order.delivered_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(order)

    if not changed:
        if order.fulfillment_status == FulfillmentStatus.DELIVERED:
            raise Conflict("Order has already been delivered")
        raise Conflict("Order is not paid")

    logger.info(f"Order {order_id} delivered by seller {seller_id}")
    return order


def claim_order(session_id: str, account: Account, db: Session) -> Order:
    """Attach a guest order to the signed-in buyer whose email it was placed with"""
    order = get_order_by_session_id(session_id, db)
    if not order:
        raise NotFound("Order not found")
    if order.buyer_id == account.id:
        return order
    if order.buyer_id is not None:
        raise Forbidden("Order belongs to another account")
    if not (account.email and order.buyer_email and account.email.lower() == order.buyer_email.lower()):
        raise Forbidden("Order was placed with a different email address")

    changed = (
        db.query(Order)
        .filter(Order.id == order.id, Order.buyer_id.is_(None))
        .update({Order.buyer_id: account.id}, synchronize_session=False)
    )
    db.commit()
    db.refresh(order)
    if not changed and order.buyer_id != account.id:
        raise Forbidden("Order belongs to another account")

    logger.info(f"Order {order.id} claimed by account {account.id}")
    return order
