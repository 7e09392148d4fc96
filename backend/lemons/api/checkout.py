"""Marketplace checkout routes"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.security import optional_account
from lemons.db.session import get_db
from lemons.models.account import Account
from lemons.schemas.payments import CheckoutRequest, RedirectResponse
from lemons.services.checkout_service import start_checkout

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


@router.post("/checkout", response_model=RedirectResponse)
def create_checkout(
    checkout_request: CheckoutRequest,
    request: Request,
    buyer: Optional[Account] = Depends(optional_account),
    db: Session = Depends(get_db)
):
    """Start a Stripe Checkout for one package of an offer. Guests may buy."""
    frontend_url = settings.FRONTEND_URL or str(request.base_url).rstrip("/")
    url = start_checkout(db, checkout_request.offer_slug, checkout_request.package_id, buyer, frontend_url)
    return {"url": url}
