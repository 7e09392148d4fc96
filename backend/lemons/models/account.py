"""Account model"""
import uuid
from sqlalchemy import BigInteger, Column, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from lemons.models.base import Base


class OnboardingStatus:
    """Derived summary of a seller's payout readiness, in advancing order"""
    NOT_CONNECTED = "not_connected"
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETE = "complete"

    ORDER = (NOT_CONNECTED, PENDING, PENDING_VERIFICATION, COMPLETE)


class SubscriptionTier:
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


class SubscriptionStatus:
    NONE = "none"
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class Account(Base):
    """Buyer/seller identity record"""
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), nullable=True, index=True)
    country = Column(String(2), nullable=True)  # ISO 3166-1 alpha-2, kept across onboarding resets

    # Stripe Connect (seller payouts)
    external_payment_account_id = Column(String(255), unique=True, nullable=True, index=True)
    onboarding_status = Column(String(32), default=OnboardingStatus.NOT_CONNECTED, nullable=False)

    # Stripe Billing (seller subscription)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    subscription_tier = Column(String(32), default=SubscriptionTier.FREE, nullable=False)
    subscription_external_id = Column(String(255), nullable=True, index=True)
    subscription_status = Column(String(32), default=SubscriptionStatus.NONE, nullable=False)
    subscription_current_period_end = Column(DateTime(timezone=True), nullable=True)
    subscription_cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    subscription_event_created = Column(BigInteger, nullable=True)  # creation time of the last applied event

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    offers = relationship("Offer", back_populates="creator")
    subscription_events = relationship("SubscriptionEvent", back_populates="account", cascade="all, delete-orphan")
