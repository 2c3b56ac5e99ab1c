import asyncio
import json
import logging
from typing import Optional, Dict, Any, List

import stripe

logger = logging.getLogger(__name__)

# Default replay window for webhook signatures, in seconds
DEFAULT_SIGNATURE_TOLERANCE = 300


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Turn a StripeObject (possibly nested) into plain dicts and lists."""
    if obj is None:
        return None
    if isinstance(obj, stripe.StripeObject):
        # StripeObject renders itself as JSON, expanded children included
        return json.loads(str(obj))
    return obj


class StripeService:
    """Async facade over a per-request StripeClient.

    The Stripe SDK is synchronous; every call runs in a worker thread so a
    slow API round trip never stalls other requests on the event loop.
    """

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[stripe.StripeClient] = None,
        signature_tolerance: int = DEFAULT_SIGNATURE_TOLERANCE,
    ):
        self.signature_tolerance = signature_tolerance
        self.client = client
        if self.client is None and api_key:
            self.client = stripe.StripeClient(api_key)

    def _check_client(self) -> stripe.StripeClient:
        if not self.client:
            raise stripe.AuthenticationError("Stripe client not initialized. Check your STRIPE_API_KEY.")
        return self.client

    async def construct_event(self, payload: str, signature: str, secret: str) -> Dict[str, Any]:
        """Verify the Stripe-Signature header and decode the event payload.

        Raises stripe.SignatureVerificationError on a bad signature and
        ValueError on a body that is not JSON.
        """
        def _verify() -> Dict[str, Any]:
            stripe.WebhookSignature.verify_header(
                payload, signature, secret, self.signature_tolerance
            )
            return json.loads(payload)

        return await asyncio.to_thread(_verify)

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        client = self._check_client()
        subscription = await asyncio.to_thread(
            client.v1.subscriptions.retrieve,
            subscription_id,
            params={"expand": ["default_payment_method"]},
        )
        return _as_dict(subscription)

    async def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        client = self._check_client()
        customer = await asyncio.to_thread(client.v1.customers.retrieve, customer_id)
        return _as_dict(customer)

    async def list_customers(self, email: str, limit: int = 1) -> List[Dict[str, Any]]:
        client = self._check_client()
        customers = await asyncio.to_thread(
            client.v1.customers.list, params={"email": email, "limit": limit}
        )
        return [_as_dict(customer) for customer in customers.data]

    async def create_customer(self, email: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        client = self._check_client()
        params = {"metadata": metadata or {}}
        if email:
            params["email"] = email
        customer = await asyncio.to_thread(client.v1.customers.create, params=params)
        return _as_dict(customer)

    async def update_customer(self, customer_id: str, **fields: Any) -> Dict[str, Any]:
        client = self._check_client()
        customer = await asyncio.to_thread(client.v1.customers.update, customer_id, params=fields)
        return _as_dict(customer)

    async def retrieve_payment_method(self, payment_method_id: str) -> Dict[str, Any]:
        client = self._check_client()
        payment_method = await asyncio.to_thread(client.v1.payment_methods.retrieve, payment_method_id)
        return _as_dict(payment_method)
