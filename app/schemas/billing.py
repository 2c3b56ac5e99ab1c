from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


def to_iso_timestamp(epoch_seconds: Optional[int]) -> Optional[str]:
    """Convert Stripe epoch seconds to a UTC ISO-8601 string with milliseconds.

    1700000000 -> "2023-11-14T22:13:20.000Z". Missing or zero values map to None.
    """
    if not epoch_seconds:
        return None
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PriceType(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"


class PriceInterval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# Table rows written to Supabase
class ProductRecord(BaseModel):
    id: str
    active: bool
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, product: Dict[str, Any]) -> "ProductRecord":
        images = product.get("images") or []
        return cls(
            id=product["id"],
            active=product.get("active", False),
            name=product.get("name", ""),
            description=product.get("description"),
            image=images[0] if images else None,
            metadata=product.get("metadata") or {},
        )


class PriceRecord(BaseModel):
    id: str
    product_id: str = ""
    active: bool
    currency: str
    type: PriceType
    unit_amount: Optional[int] = None
    interval: Optional[PriceInterval] = None
    interval_count: Optional[int] = None
    trial_period_days: Optional[int] = None

    @classmethod
    def from_stripe(cls, price: Dict[str, Any]) -> "PriceRecord":
        product = price.get("product")
        recurring = price.get("recurring") or {}
        return cls(
            id=price["id"],
            # Expanded product objects are not a plain id
            product_id=product if isinstance(product, str) else "",
            active=price.get("active", False),
            currency=price["currency"],
            type=price["type"],
            unit_amount=price.get("unit_amount"),
            interval=recurring.get("interval"),
            interval_count=recurring.get("interval_count"),
            trial_period_days=recurring.get("trial_period_days"),
        )


class CustomerMapping(BaseModel):
    id: str
    stripe_customer_id: str
    created: str = Field(default_factory=utc_now_iso)


class SubscriptionRecord(BaseModel):
    id: str
    user_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    status: str
    price_id: Optional[str] = None
    quantity: Optional[int] = None
    cancel_at_period_end: bool = False
    cancel_at: Optional[str] = None
    canceled_at: Optional[str] = None
    current_period_start: Optional[str] = None
    current_period_end: Optional[str] = None
    created: Optional[str] = None
    ended_at: Optional[str] = None
    trial_start: Optional[str] = None
    trial_end: Optional[str] = None

    @classmethod
    def from_stripe(cls, subscription: Dict[str, Any], user_id: str) -> "SubscriptionRecord":
        items = (subscription.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}
        price = first_item.get("price") or {}

        quantity = subscription.get("quantity")
        if quantity is None:
            quantity = first_item.get("quantity")

        # Newer API versions moved the billing period onto the subscription item
        period_start = subscription.get("current_period_start") or first_item.get("current_period_start")
        period_end = subscription.get("current_period_end") or first_item.get("current_period_end")

        return cls(
            id=subscription["id"],
            user_id=user_id,
            metadata=subscription.get("metadata") or {},
            status=subscription["status"],
            price_id=price.get("id"),
            quantity=quantity,
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            cancel_at=to_iso_timestamp(subscription.get("cancel_at")),
            canceled_at=to_iso_timestamp(subscription.get("canceled_at")),
            current_period_start=to_iso_timestamp(period_start),
            current_period_end=to_iso_timestamp(period_end),
            created=to_iso_timestamp(subscription.get("created")),
            ended_at=to_iso_timestamp(subscription.get("ended_at")),
            trial_start=to_iso_timestamp(subscription.get("trial_start")),
            trial_end=to_iso_timestamp(subscription.get("trial_end")),
        )


class UserBillingUpdate(BaseModel):
    billing_address: Dict[str, Any]
    payment_method: Dict[str, Any] = Field(default_factory=dict)
