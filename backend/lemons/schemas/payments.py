"""Pydantic schemas for the Stripe-facing API routes"""
from pydantic import BaseModel
from typing import Optional


class CheckoutRequest(BaseModel):
    offer_slug: str
    package_id: str


class SubscriptionCheckoutRequest(BaseModel):
    price_id: str


class DeliverOrderRequest(BaseModel):
    delivery_message: Optional[str] = None


class RedirectResponse(BaseModel):
    url: str


class OnboardingStatusResponse(BaseModel):
    status: str
    stripe_account_id: Optional[str] = None
    charges_enabled: Optional[bool] = None
    payouts_enabled: Optional[bool] = None
    details_submitted: Optional[bool] = None
