from enum import Enum
from typing import Optional

from fastapi import status


class ErrorKind(str, Enum):
    CONFIGURATION_OR_AUTH = "configuration_or_auth"
    SIGNATURE_INVALID = "signature_invalid"
    UNSUPPORTED_EVENT = "unsupported_event"
    STORE_WRITE = "store_write"
    UPSTREAM_LOOKUP_FAILED = "upstream_lookup_failed"
    CUSTOMER_NOT_MAPPED = "customer_not_mapped"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
    UPSTREAM_CREATE_FAILED = "upstream_create_failed"


class SyncError(Exception):
    """Base error for webhook handling and record sync failures.

    Every failure maps to a 400 response; Stripe redelivers the event.
    """
    kind: ErrorKind = ErrorKind.STORE_WRITE
    default_message = "Record sync failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        self.status_code = status.HTTP_400_BAD_REQUEST
        super().__init__(self.message)


class ConfigurationError(SyncError):
    """Missing webhook secret, signature header or payload"""
    kind = ErrorKind.CONFIGURATION_OR_AUTH
    default_message = "Webhook secret not found."


class SignatureInvalidError(SyncError):
    """Webhook signature verification failed"""
    kind = ErrorKind.SIGNATURE_INVALID
    default_message = "Invalid signature"


class UnsupportedEventError(SyncError):
    """Event type is not handled by this service"""
    kind = ErrorKind.UNSUPPORTED_EVENT
    default_message = "Unhandled relevant event!"


class StoreWriteError(SyncError):
    """Supabase rejected a read or write"""
    kind = ErrorKind.STORE_WRITE


class UpstreamLookupError(SyncError):
    """A Stripe API call failed"""
    kind = ErrorKind.UPSTREAM_LOOKUP_FAILED
    default_message = "Stripe lookup failed"


class CustomerNotMappedError(SyncError):
    """No stripe_customers row for the Stripe customer"""
    kind = ErrorKind.CUSTOMER_NOT_MAPPED

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer lookup failed: no mapping for {customer_id}")


class SubscriptionNotFoundError(SyncError):
    kind = ErrorKind.SUBSCRIPTION_NOT_FOUND
    default_message = "No subscription found"


class UpstreamCreateError(SyncError):
    kind = ErrorKind.UPSTREAM_CREATE_FAILED
    default_message = "Stripe customer creation failed."


class StoreError(Exception):
    """Raised by the Supabase store adapter when a query fails"""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)

    @property
    def is_foreign_key_violation(self) -> bool:
        return self.code == "23503" or "foreign key constraint" in self.message
