from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class EventData(BaseModel):
    object: Dict[str, Any]


class StripeEvent(BaseModel):
    """Verified Stripe event envelope; only the fields the dispatcher reads."""
    id: Optional[str] = None
    type: str
    data: EventData


class CustomerResponse(BaseModel):
    success: bool
    stripe_customer_id: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = Field(default=True)
