"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from lemons.models.base import Base
from lemons.models.account import Account
from lemons.models.offer import Offer, Package
from lemons.models.order import Order
from lemons.models.subscription_event import SubscriptionEvent

# Export all for convenience
__all__ = ["Base", "Account", "Offer", "Package", "Order", "SubscriptionEvent"]
