"""Order model"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from datetime import datetime, timezone
from lemons.models.base import Base


class OrderStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class FulfillmentStatus:
    UNFULFILLED = "unfulfilled"
    DELIVERED = "delivered"


class Order(Base):
    """One committed marketplace transaction, keyed by its checkout session"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    checkout_session_id = Column(String(255), unique=True, nullable=False, index=True)  # idempotency key
    payment_intent_id = Column(String(255), nullable=True, index=True)
    buyer_id = Column(String(36), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    buyer_email = Column(String(255), nullable=True)  # captured for guest buyers
    seller_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    offer_id = Column(String(36), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    package_id = Column(String(36), ForeignKey("packages.id", ondelete="CASCADE"), nullable=False)
    amount_total = Column(Integer, nullable=True)  # minor units
    currency = Column(String(3), nullable=True)
    platform_fee_amount = Column(Integer, nullable=True)  # minor units, as applied on the payment intent
    status = Column(String(20), default=OrderStatus.PENDING, nullable=False)
    fulfillment_status = Column(String(20), default=FulfillmentStatus.UNFULFILLED, nullable=False)
    delivery_message = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_orders_seller_created', 'seller_id', 'created_at'),
    )
