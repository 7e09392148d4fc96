"""Stripe webhook route"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lemons.db.session import get_db
from lemons.services.webhook_service import process_webhook

router = APIRouter(prefix="/api/stripe", tags=["stripe"])
logger = logging.getLogger(__name__)


@router.post("/webhooks")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events from both the platform and connected accounts

    Note: the body must reach this handler as raw bytes; signature
    verification runs over the exact bytes Stripe signed.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    return process_webhook(payload, sig_header, db)
