"""Order fulfilment routes"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lemons.core.security import require_account
from lemons.db.session import get_db
from lemons.models.account import Account
from lemons.models.order import Order
from lemons.schemas.payments import DeliverOrderRequest
from lemons.services.order_service import claim_order, mark_order_delivered

router = APIRouter(prefix="/api/orders", tags=["orders"])


def _order_summary(order: Order) -> dict:
    return {
        "id": order.id,
        "status": order.status,
        "fulfillment_status": order.fulfillment_status,
        "amount_total": order.amount_total,
        "currency": order.currency,
        "offer_id": order.offer_id,
        "package_id": order.package_id,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
    }


@router.post("/{order_id}/deliver")
def deliver_order(
    order_id: str,
    deliver_request: DeliverOrderRequest,
    account: Account = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Seller marks a paid order as delivered"""
    order = mark_order_delivered(order_id, account.id, deliver_request.delivery_message, db)
    return _order_summary(order)


@router.get("/claim")
def claim(
    session_id: str = Query(..., description="Stripe checkout session ID"),
    account: Account = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Attach a guest purchase to the signed-in buyer after checkout"""
    order = claim_order(session_id, account, db)
    return _order_summary(order)
