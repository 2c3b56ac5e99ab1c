"""Stripe event dispatch: maps relevant event types to record sync operations."""
import logging
from typing import Dict, Any

from app.core.exceptions import UnsupportedEventError
from app.schemas.subscription import StripeEvent
from app.services.sync_service import BillingSyncService

logger = logging.getLogger(__name__)

RELEVANT_EVENTS = frozenset({
    "product.created",
    "product.updated",
    "product.deleted",
    "price.created",
    "price.updated",
    "price.deleted",
    "checkout.session.completed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})


def is_relevant(event_type: str) -> bool:
    return event_type in RELEVANT_EVENTS


def _object_id(value: Any) -> Any:
    """Stripe sends either an id or the expanded object for references"""
    if isinstance(value, dict):
        return value.get("id")
    return value


async def dispatch_event(event: StripeEvent, sync: BillingSyncService) -> None:
    """Run the sync operation for a relevant event.

    Errors from the sync service propagate to the caller unchanged.
    """
    event_type = event.type
    obj: Dict[str, Any] = event.data.object

    if event_type in ("product.created", "product.updated"):
        await sync.upsert_product(obj)
    elif event_type == "product.deleted":
        await sync.delete_product(obj)
    elif event_type in ("price.created", "price.updated"):
        await sync.upsert_price(obj)
    elif event_type == "price.deleted":
        await sync.delete_price(obj)
    elif event_type in (
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ):
        await sync.manage_subscription_status_change(
            obj["id"],
            _object_id(obj.get("customer")),
        )
    elif event_type == "checkout.session.completed":
        if obj.get("mode") == "subscription":
            await sync.manage_subscription_status_change(
                _object_id(obj.get("subscription")),
                _object_id(obj.get("customer")),
                is_new_checkout=True,
            )
        else:
            logger.info("Checkout session %s in mode %s needs no sync", obj.get("id"), obj.get("mode"))
    else:
        logger.error("Unhandled relevant event: %s", event_type)
        raise UnsupportedEventError()
