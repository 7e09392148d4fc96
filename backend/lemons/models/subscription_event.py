"""SubscriptionEvent model"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from lemons.models.base import Base


class SubscriptionEvent(Base):
    """Subscription tier change audit log, one row per webhook event"""
    __tablename__ = "subscription_events"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    external_event_id = Column(String(255), unique=True, nullable=False, index=True)  # idempotency key
    event_type = Column(String(100), nullable=False)
    external_subscription_id = Column(String(255), nullable=True)
    product_id = Column(String(255), nullable=True)
    previous_tier = Column(String(32), nullable=True)
    new_tier = Column(String(32), nullable=False)
    external_status = Column(String(32), nullable=True)  # raw Stripe status
    internal_status = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    account = relationship("Account", back_populates="subscription_events")
