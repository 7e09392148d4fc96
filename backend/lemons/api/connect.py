"""Stripe Connect onboarding routes for sellers"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.security import require_account
from lemons.db.session import get_db
from lemons.models.account import Account
from lemons.schemas.payments import OnboardingStatusResponse, RedirectResponse
from lemons.services.connect_service import (
    create_dashboard_link, refresh_onboarding_status, reset_onboarding, start_onboarding
)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


@router.post("/connect", response_model=RedirectResponse)
def connect_onboarding(
    request: Request,
    account: Account = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Get a fresh Stripe onboarding link, creating the connected account if needed"""
    frontend_url = settings.FRONTEND_URL or str(request.base_url).rstrip("/")
    return {"url": start_onboarding(db, account, frontend_url)}


@router.post("/connect/status", response_model=OnboardingStatusResponse)
def connect_status(account: Account = Depends(require_account), db: Session = Depends(get_db)):
    """Re-check the connected account with Stripe (fallback for missed webhooks)"""
    return refresh_onboarding_status(db, account)


@router.post("/connect/reset", response_model=OnboardingStatusResponse)
def connect_reset(account: Account = Depends(require_account), db: Session = Depends(get_db)):
    """Unlink the connected account so the seller can start over"""
    account = reset_onboarding(db, account)
    return {"status": account.onboarding_status, "stripe_account_id": None}


@router.post("/dashboard", response_model=RedirectResponse)
def express_dashboard(account: Account = Depends(require_account)):
    """Login link to the seller's Stripe Express dashboard"""
    return {"url": create_dashboard_link(account)}
