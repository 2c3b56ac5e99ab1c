import asyncio
import logging
from typing import Optional, Dict, Any, Callable, Awaitable

import stripe

from app.core.exceptions import (
    StoreError,
    StoreWriteError,
    UpstreamLookupError,
    CustomerNotMappedError,
    SubscriptionNotFoundError,
    UpstreamCreateError,
)
from app.schemas.billing import (
    ProductRecord,
    PriceRecord,
    CustomerMapping,
    SubscriptionRecord,
    UserBillingUpdate,
)
from app.services.stripe_service import StripeService
from app.services.supabase_service import SupabaseStore

logger = logging.getLogger(__name__)

PRODUCTS_TABLE = "products"
PRICES_TABLE = "prices"
CUSTOMERS_TABLE = "stripe_customers"
SUBSCRIPTIONS_TABLE = "subscriptions"
USERS_TABLE = "users"

DEFAULT_RETRY_DELAY = 2.0
DEFAULT_MAX_RETRIES = 3

Sleep = Callable[[float], Awaitable[Any]]


class BillingSyncService:
    """Mirrors Stripe billing objects into Supabase tables.

    Every operation is an upsert or delete keyed by primary id, so replaying
    an event only repeats writes. ``sleep`` is injectable so the retry delays
    can be observed without waiting on the wall clock.
    """

    def __init__(
        self,
        stripe_service: StripeService,
        store: SupabaseStore,
        sleep: Sleep = asyncio.sleep,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.stripe = stripe_service
        self.store = store
        self.sleep = sleep
        self.retry_delay = retry_delay
        self.max_retries = max_retries

    # Products and prices

    async def upsert_product(self, product: Dict[str, Any]) -> None:
        record = ProductRecord.from_stripe(product)
        try:
            await self.store.upsert(PRODUCTS_TABLE, [record.model_dump(mode="json")])
        except StoreError as e:
            logger.error("upsert_product(): upsert failed for %s: %s", record.id, e.message)
            raise StoreWriteError(f"Product insert/update failed: {e.message}") from e
        logger.info("Product inserted/updated: %s", record.id)

    async def delete_product(self, product: Dict[str, Any]) -> None:
        product_id = product["id"]
        try:
            await self.store.delete(PRODUCTS_TABLE, product_id)
        except StoreError as e:
            logger.error("delete_product(): deletion failed for %s: %s", product_id, e.message)
            raise StoreWriteError(f"Product deletion failed: {e.message}") from e
        logger.info("Product deleted: %s", product_id)

    async def upsert_price(self, price: Dict[str, Any], max_retries: Optional[int] = None) -> None:
        """Upsert a price row, waiting for its product row to show up.

        Products and prices are delivered independently, so a price may land
        before its product. A foreign key violation is retried ``max_retries``
        times, ``retry_delay`` seconds apart; any other failure is raised at once.
        """
        if max_retries is None:
            max_retries = self.max_retries
        record = PriceRecord.from_stripe(price)
        row = record.model_dump(mode="json")

        attempt = 0
        while True:
            try:
                await self.store.upsert(PRICES_TABLE, [row])
                break
            except StoreError as e:
                if not e.is_foreign_key_violation:
                    logger.error("upsert_price(): upsert failed for %s: %s", record.id, e.message)
                    raise StoreWriteError(f"Price insert/update failed: {e.message}") from e
                if attempt >= max_retries:
                    logger.error(
                        "upsert_price(): price %s failed after %d retries: %s",
                        record.id, max_retries, e.message,
                    )
                    raise StoreWriteError(
                        f"Price insert/update failed after {max_retries} retries: {e.message}"
                    ) from e
                attempt += 1
                logger.warning("Retry attempt %d for price ID: %s", attempt, record.id)
                await self.sleep(self.retry_delay)

        logger.info("Price inserted/updated: %s", record.id)

    async def delete_price(self, price: Dict[str, Any]) -> None:
        price_id = price["id"]
        try:
            await self.store.delete(PRICES_TABLE, price_id)
        except StoreError as e:
            logger.error("delete_price(): deletion failed for %s: %s", price_id, e.message)
            raise StoreWriteError(f"Price deletion failed: {e.message}") from e
        logger.info("Price deleted: %s", price_id)

    # Subscriptions

    async def find_subscription(self, subscription_id: str, max_retries: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Fetch a subscription from Stripe, tolerating propagation lag.

        Each attempt waits ``retry_delay`` first since this call usually races
        the event that announced the subscription. Only invalid-request errors
        (typically "No such subscription" right after checkout) are retried;
        every other failure gives up and returns None.
        """
        if max_retries is None:
            max_retries = self.max_retries

        attempt = 0
        while True:
            await self.sleep(self.retry_delay)
            try:
                return await self.stripe.retrieve_subscription(subscription_id)
            except stripe.CardError as e:
                logger.error("A payment error occurred: %s", e.user_message or str(e))
                return None
            except stripe.InvalidRequestError as e:
                logger.warning("An invalid request occurred for subscription %s: %s", subscription_id, e.user_message or str(e))
                if attempt >= max_retries:
                    logger.error("Failed to retrieve subscription ID: %s", subscription_id)
                    return None
                attempt += 1
                logger.info("Retry attempt %d for subscription ID: %s", attempt, subscription_id)
            except Exception:
                logger.exception("Another problem occurred retrieving subscription %s", subscription_id)
                return None

    async def manage_subscription_status_change(
        self,
        subscription_id: str,
        customer_id: str,
        is_new_checkout: bool = False,
    ) -> None:
        logger.info("Subscription status change for [%s], customer: [%s]", subscription_id, customer_id)

        try:
            customer = await self.store.select_one(
                CUSTOMERS_TABLE, "id, stripe_customer_id", stripe_customer_id=customer_id
            )
        except StoreError as e:
            logger.error("manage_subscription_status_change(): customer lookup failed: %s", e.message)
            raise StoreWriteError(f"Customer lookup failed: {e.message}") from e
        if not customer:
            logger.error("manage_subscription_status_change(): no mapping for customer %s", customer_id)
            raise CustomerNotMappedError(customer_id)

        user_id = customer["id"]

        subscription = await self.find_subscription(subscription_id)
        if not subscription:
            logger.error("manage_subscription_status_change(): no subscription found for %s", subscription_id)
            raise SubscriptionNotFoundError()

        record = SubscriptionRecord.from_stripe(subscription, user_id)
        try:
            await self.store.upsert(SUBSCRIPTIONS_TABLE, [record.model_dump(mode="json")])
        except StoreError as e:
            logger.error("manage_subscription_status_change(): upsert failed: %s", e.message)
            raise StoreWriteError(f"Subscription insert/update failed: {e.message}") from e
        logger.info("Inserted/updated subscription [%s] for user [%s]", record.id, user_id)

        # Billing details are copied last: the subscription row must not wait on it
        payment_method = subscription.get("default_payment_method")
        if is_new_checkout and payment_method and user_id:
            try:
                await self.copy_billing_details_to_customer(user_id, customer_id, payment_method)
            except Exception:
                logger.exception(
                    "Billing details not copied for user [%s], subscription [%s]",
                    user_id, record.id,
                )

    async def copy_billing_details_to_customer(self, user_id: str, customer_id: str, payment_method: Any) -> None:
        """Copy name, phone and address from a payment method onto the customer."""
        try:
            if isinstance(payment_method, str):
                payment_method = await self.stripe.retrieve_payment_method(payment_method)

            billing_details = payment_method.get("billing_details") or {}
            name = billing_details.get("name")
            phone = billing_details.get("phone")
            address = billing_details.get("address")
            if not name or not phone or not address:
                return
            await self.stripe.update_customer(customer_id, name=name, phone=phone, address=address)
        except stripe.StripeError as e:
            raise UpstreamLookupError(f"Customer update failed: {e.user_message or str(e)}") from e

        method_type = payment_method.get("type")
        update = UserBillingUpdate(
            billing_address=dict(address),
            payment_method=dict(payment_method.get(method_type) or {}),
        )
        try:
            await self.store.update(USERS_TABLE, update.model_dump(mode="json"), id=user_id)
        except StoreError as e:
            raise StoreWriteError(f"Customer update failed: {e.message}") from e
        logger.info("Copied billing details to customer %s for user %s", customer_id, user_id)

    # Customers

    async def create_or_retrieve_customer(self, email: str, uuid: str) -> str:
        """Return the Stripe customer id for a user, creating what is missing.

        Stripe is the source of truth: a stale mapping row is rewritten to
        match it, and a missing one is created.
        """
        try:
            existing = await self.store.select_one(CUSTOMERS_TABLE, "*", id=uuid)
        except StoreError as e:
            logger.error("create_or_retrieve_customer(): lookup failed: %s", e.message)
            raise StoreWriteError(f"Supabase customer lookup failed: {e.message}") from e

        stripe_customer_id = None
        mapped_id = existing.get("stripe_customer_id") if existing else None
        if mapped_id:
            stripe_customer_id = await self._verify_stripe_customer(mapped_id)
        # Without an email a customer search has no filter and would match anyone
        if not stripe_customer_id and email:
            stripe_customer_id = await self._find_stripe_customer_by_email(email)

        resolved_id = stripe_customer_id or await self._create_stripe_customer(uuid, email)

        if existing:
            if mapped_id != resolved_id:
                try:
                    await self.store.update(CUSTOMERS_TABLE, {"stripe_customer_id": resolved_id}, id=uuid)
                except StoreError as e:
                    logger.error("create_or_retrieve_customer(): update failed: %s", e.message)
                    raise StoreWriteError(f"Supabase customer record update failed: {e.message}") from e
                logger.warning(
                    "Supabase customer record for %s mismatched Stripe ID %s. Supabase record updated.",
                    uuid, resolved_id,
                )
            return resolved_id

        mapping = CustomerMapping(id=uuid, stripe_customer_id=resolved_id)
        try:
            await self.store.upsert(CUSTOMERS_TABLE, [mapping.model_dump(mode="json")])
        except StoreError as e:
            logger.error("create_or_retrieve_customer(): upsert failed: %s", e.message)
            raise StoreWriteError(f"Supabase customer record creation failed: {e.message}") from e
        logger.warning("Supabase customer record for %s was missing. A new record was created.", uuid)
        return resolved_id

    async def _verify_stripe_customer(self, customer_id: str) -> Optional[str]:
        try:
            customer = await self.stripe.retrieve_customer(customer_id)
        except stripe.StripeError as e:
            logger.warning("Mapped Stripe customer %s could not be verified: %s", customer_id, e.user_message or str(e))
            return None
        if not customer or customer.get("deleted"):
            logger.warning("Mapped Stripe customer %s no longer exists", customer_id)
            return None
        logger.info("Existing Stripe customer: %s", customer["id"])
        return customer["id"]

    async def _find_stripe_customer_by_email(self, email: str) -> Optional[str]:
        try:
            customers = await self.stripe.list_customers(email)
        except stripe.StripeError as e:
            raise UpstreamLookupError(f"Stripe customer lookup failed: {e.user_message or str(e)}") from e
        if customers:
            return customers[0]["id"]
        return None

    async def _create_stripe_customer(self, uuid: str, email: str) -> str:
        try:
            customer = await self.stripe.create_customer(email, metadata={"supabaseUUID": uuid})
        except stripe.StripeError as e:
            logger.error("create_or_retrieve_customer(): customer creation failed: %s", e.user_message or str(e))
            raise UpstreamCreateError() from e
        if not customer or not customer.get("id"):
            logger.error("create_or_retrieve_customer(): customer creation returned nothing")
            raise UpstreamCreateError()
        logger.info("Created Stripe customer %s for user %s", customer["id"], uuid)
        return customer["id"]
