from typing import AsyncGenerator

from fastapi import Depends

from .config import settings
from app.services.stripe_service import StripeService
from app.services.supabase_service import SupabaseStore
from app.services.sync_service import BillingSyncService


async def get_store() -> AsyncGenerator[SupabaseStore, None]:
    """Dependency to get a request-scoped Supabase store"""
    store = SupabaseStore(settings.supabase_url, settings.supabase_key)
    try:
        yield store
    finally:
        await store.close()


def get_stripe_service() -> StripeService:
    """Dependency to get a request-scoped Stripe client"""
    return StripeService(settings.stripe_api_key)


def get_sync_service(
    stripe_service: StripeService = Depends(get_stripe_service),
    store: SupabaseStore = Depends(get_store),
) -> BillingSyncService:
    return BillingSyncService(
        stripe_service,
        store,
        retry_delay=settings.sync_retry_delay_seconds,
        max_retries=settings.sync_max_retries,
    )


def get_webhook_secret() -> str:
    return settings.stripe_webhook_secret or ""
