"""Pydantic shapes for Stripe webhook payloads.

Only the fields the reconciliation layer reads are declared; everything
else in Stripe's payload is ignored.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _expandable_id(value: Any) -> Any:
    """Stripe sends either an id string or the expanded object"""
    if isinstance(value, dict):
        return value.get("id")
    return value


class StripeEventEnvelope(StripeModel):
    """Outer event envelope, common to snapshot (v1) and thin (v2) events"""
    id: str
    type: str
    account: Optional[str] = None  # set on events from connected accounts
    created: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    related_object: Optional[Dict[str, Any]] = None  # v2 thin events only

    def data_object(self) -> Optional[Dict[str, Any]]:
        obj = self.data.get("object") if isinstance(self.data, dict) else None
        return obj if isinstance(obj, dict) else None


class ConnectedAccountObject(StripeModel):
    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False

    @field_validator("charges_enabled", "payouts_enabled", "details_submitted", mode="before")
    @classmethod
    def none_is_false(cls, v):
        return bool(v) if v is not None else False


class CustomerDetails(StripeModel):
    email: Optional[str] = None


class CheckoutSessionObject(StripeModel):
    id: str
    mode: Optional[str] = None  # payment | subscription | setup
    payment_intent: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    client_reference_id: Optional[str] = None
    metadata: Dict[str, Optional[str]] = Field(default_factory=dict)

    @field_validator("payment_intent", mode="before")
    @classmethod
    def collapse_payment_intent(cls, v):
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or {}

    @property
    def buyer_email(self) -> Optional[str]:
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.customer_email


class SubscriptionPrice(StripeModel):
    id: Optional[str] = None
    product: Optional[str] = None

    @field_validator("product", mode="before")
    @classmethod
    def collapse_product(cls, v):
        return _expandable_id(v)


class SubscriptionItem(StripeModel):
    id: Optional[str] = None
    price: Optional[SubscriptionPrice] = None
    current_period_end: Optional[int] = None  # API versions >= 2025-03-31


class SubscriptionItemList(StripeModel):
    data: List[SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(StripeModel):
    id: str
    status: str
    customer: Optional[str] = None
    metadata: Dict[str, Optional[str]] = Field(default_factory=dict)
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)
    current_period_end: Optional[int] = None  # API versions before 2025-03-31
    cancel_at_period_end: bool = False

    @field_validator("customer", mode="before")
    @classmethod
    def collapse_customer(cls, v):
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or {}

    @property
    def product_id(self) -> Optional[str]:
        for item in self.items.data:
            if item.price and item.price.product:
                return item.price.product
        return None

    @property
    def period_end(self) -> Optional[int]:
        if self.current_period_end:
            return self.current_period_end
        ends = [item.current_period_end for item in self.items.data if item.current_period_end]
        return max(ends) if ends else None
