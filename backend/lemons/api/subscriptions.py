"""Seller subscription routes"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.security import require_account
from lemons.db.session import get_db
from lemons.models.account import Account
from lemons.schemas.payments import RedirectResponse, SubscriptionCheckoutRequest
from lemons.services.subscription_service import create_billing_portal_url, start_subscription_checkout

router = APIRouter(prefix="/api/stripe/subscription", tags=["subscriptions"])


@router.post("/checkout", response_model=RedirectResponse)
def create_subscription_checkout(
    checkout_request: SubscriptionCheckoutRequest,
    request: Request,
    account: Account = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Create Stripe checkout session for a seller subscription"""
    frontend_url = settings.FRONTEND_URL or str(request.base_url).rstrip("/")
    return {"url": start_subscription_checkout(db, account, checkout_request.price_id, frontend_url)}


@router.post("/portal", response_model=RedirectResponse)
def billing_portal(request: Request, account: Account = Depends(require_account)):
    """Get Stripe customer portal URL"""
    frontend_url = settings.FRONTEND_URL or str(request.base_url).rstrip("/")
    return {"url": create_billing_portal_url(account, frontend_url)}
