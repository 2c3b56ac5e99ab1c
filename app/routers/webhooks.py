from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
import logging
import stripe

from app.core.database import get_stripe_service, get_sync_service, get_webhook_secret
from app.core.exceptions import ConfigurationError, SignatureInvalidError, SyncError
from app.schemas.subscription import StripeEvent, WebhookAck
from app.services.stripe_service import StripeService
from app.services.sync_service import BillingSyncService
from app.services.webhook_dispatcher import dispatch_event, is_relevant

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_response(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    sync: BillingSyncService = Depends(get_sync_service),
    webhook_secret: str = Depends(get_webhook_secret),
):
    """
    Receive a Stripe webhook and mirror the billing object into Supabase.

    Answers 200 {"received": true} once the record sync succeeded and 400 with
    a plain-text reason otherwise; Stripe redelivers failed events.
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature or not webhook_secret or not body:
        error = ConfigurationError()
        logger.error("Webhook rejected: %s", error.message)
        return _error_response(error.message, error.status_code)

    try:
        payload = body.decode("utf-8")
        raw_event = await stripe_service.construct_event(payload, signature, webhook_secret)
        event = StripeEvent.model_validate(raw_event)
    except (stripe.SignatureVerificationError, ValueError) as e:
        error = SignatureInvalidError(str(e))
        logger.error("❌ Error message: %s", error.message)
        return _error_response(f"Webhook Error: {error.message}", error.status_code)

    logger.info("🔔  Webhook received: %s", event.type)

    if not is_relevant(event.type):
        logger.info("Unsupported event type: %s", event.type)
        return _error_response(f"Unsupported event type: {event.type}")

    try:
        await dispatch_event(event, sync)
    except SyncError as e:
        logger.error("Webhook %s (%s) failed: %s", event.type, e.kind.value, e.message)
        return _error_response(f"Webhook Error: {e.message}", e.status_code)
    except Exception as e:
        logger.exception("Webhook %s failed unexpectedly", event.type)
        return _error_response(f"Webhook Error: {e}")

    return JSONResponse(content=WebhookAck().model_dump())
