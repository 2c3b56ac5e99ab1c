"""
Shared fixtures: in-memory stand-ins for the Stripe and Supabase adapters.
"""
import copy
from typing import Any, Dict, List, Optional

import pytest
import stripe

from app.core.exceptions import StoreError
from app.services.sync_service import BillingSyncService

FK_MESSAGE = (
    'insert or update on table "prices" violates foreign key constraint '
    '"prices_product_id_fkey"'
)


class FakeStore:
    """Dict-backed SupabaseStore with the same method surface.

    Set ``enforce_foreign_keys`` to reject prices whose product row is
    missing, and queue failures per (operation, table) in ``failures``.
    """

    def __init__(self, enforce_foreign_keys: bool = False):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.enforce_foreign_keys = enforce_foreign_keys
        self.failures: Dict[tuple, List[StoreError]] = {}
        self.calls: List[tuple] = []

    def fail(self, operation: str, table: str, message: str, code: Optional[str] = None, times: int = 1):
        queue = self.failures.setdefault((operation, table), [])
        queue.extend(StoreError(message, code) for _ in range(times))

    def rows(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(table, {})

    def _maybe_fail(self, operation: str, table: str):
        queue = self.failures.get((operation, table))
        if queue:
            raise queue.pop(0)

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        return all(row.get(column) == value for column, value in filters.items())

    async def upsert(self, table, rows):
        self.calls.append(("upsert", table))
        self._maybe_fail("upsert", table)
        for row in rows:
            if self.enforce_foreign_keys and table == "prices" and row["product_id"] not in self.rows("products"):
                raise StoreError(FK_MESSAGE, "23503")
        for row in rows:
            self.rows(table)[row["id"]] = copy.deepcopy(row)
        return copy.deepcopy(rows)

    async def delete(self, table, record_id):
        self.calls.append(("delete", table))
        self._maybe_fail("delete", table)
        removed = self.rows(table).pop(record_id, None)
        return [removed] if removed else []

    async def select(self, table, columns="*", limit=None, **filters):
        self.calls.append(("select", table))
        self._maybe_fail("select", table)
        found = [copy.deepcopy(row) for row in self.rows(table).values() if self._matches(row, filters)]
        return found[:limit] if limit is not None else found

    async def select_one(self, table, columns="*", **filters):
        rows = await self.select(table, columns, limit=1, **filters)
        return rows[0] if rows else None

    async def update(self, table, values, **filters):
        self.calls.append(("update", table))
        self._maybe_fail("update", table)
        updated = []
        for row in self.rows(table).values():
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    async def close(self):
        pass


class FakeStripe:
    """Records calls and serves objects from dicts, like StripeService would."""

    def __init__(self):
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.payment_methods: Dict[str, Dict[str, Any]] = {}
        self.subscription_errors: List[Exception] = []
        self.customer_errors: Dict[str, Exception] = {}
        self.create_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self._next_customer = 1

    async def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve_subscription", subscription_id))
        if self.subscription_errors:
            raise self.subscription_errors.pop(0)
        if subscription_id not in self.subscriptions:
            raise stripe.InvalidRequestError(f"No such subscription: '{subscription_id}'", "id")
        return copy.deepcopy(self.subscriptions[subscription_id])

    async def retrieve_customer(self, customer_id):
        self.calls.append(("retrieve_customer", customer_id))
        if customer_id in self.customer_errors:
            raise self.customer_errors[customer_id]
        if customer_id not in self.customers:
            raise stripe.InvalidRequestError(f"No such customer: '{customer_id}'", "id")
        return copy.deepcopy(self.customers[customer_id])

    async def list_customers(self, email, limit=1):
        self.calls.append(("list_customers", email))
        found = [c for c in self.customers.values() if c.get("email") == email and not c.get("deleted")]
        return copy.deepcopy(found[:limit])

    async def create_customer(self, email, metadata=None):
        self.calls.append(("create_customer", email))
        if self.create_error:
            raise self.create_error
        customer_id = f"cus_new{self._next_customer}"
        self._next_customer += 1
        self.customers[customer_id] = {"id": customer_id, "email": email, "metadata": metadata or {}}
        return copy.deepcopy(self.customers[customer_id])

    async def update_customer(self, customer_id, **fields):
        self.calls.append(("update_customer", customer_id, fields))
        if self.update_error:
            raise self.update_error
        self.customers.setdefault(customer_id, {"id": customer_id}).update(fields)
        return copy.deepcopy(self.customers[customer_id])

    async def retrieve_payment_method(self, payment_method_id):
        self.calls.append(("retrieve_payment_method", payment_method_id))
        return copy.deepcopy(self.payment_methods[payment_method_id])

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class SleepRecorder:
    """Injected in place of asyncio.sleep; optionally runs a hook per sleep."""

    def __init__(self):
        self.delays: List[float] = []
        self.on_sleep = None

    async def __call__(self, delay: float):
        self.delays.append(delay)
        if self.on_sleep is not None:
            await self.on_sleep(len(self.delays))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def fake_stripe():
    return FakeStripe()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def sync(fake_stripe, store, sleeper):
    return BillingSyncService(fake_stripe, store, sleep=sleeper, retry_delay=2.0, max_retries=3)


def make_product(product_id: str = "prod_1", **overrides) -> Dict[str, Any]:
    product = {
        "id": product_id,
        "object": "product",
        "active": True,
        "name": "Pro plan",
        "description": "Everything in Free, and more",
        "images": ["https://files.stripe.com/pro.png"],
        "metadata": {"tier": "pro"},
    }
    product.update(overrides)
    return product


def make_price(price_id: str = "price_1", product_id: str = "prod_1", **overrides) -> Dict[str, Any]:
    price = {
        "id": price_id,
        "object": "price",
        "product": product_id,
        "active": True,
        "currency": "usd",
        "type": "recurring",
        "unit_amount": 1500,
        "recurring": {"interval": "month", "interval_count": 1, "trial_period_days": 14},
    }
    price.update(overrides)
    return price


def make_subscription(subscription_id: str = "sub_1", customer_id: str = "cus_1", **overrides) -> Dict[str, Any]:
    subscription = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": "active",
        "metadata": {"source": "checkout"},
        "items": {"data": [{"id": "si_1", "quantity": 1, "price": {"id": "price_1"}}]},
        "quantity": 1,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "canceled_at": None,
        "current_period_start": 1700000000,
        "current_period_end": 1702592000,
        "created": 1700000000,
        "ended_at": None,
        "trial_start": None,
        "trial_end": None,
        "default_payment_method": None,
    }
    subscription.update(overrides)
    return subscription
