from fastapi import APIRouter, Depends, HTTPException
import logging

from app.core.auth import get_current_user
from app.core.database import get_sync_service
from app.core.exceptions import SyncError
from app.schemas.auth import TokenData
from app.schemas.subscription import CustomerResponse
from app.services.sync_service import BillingSyncService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/me", response_model=CustomerResponse)
async def create_or_retrieve_customer(
    current_user: TokenData = Depends(get_current_user),
    sync: BillingSyncService = Depends(get_sync_service),
):
    """Get the Stripe customer for the signed-in user, creating it if needed"""
    try:
        customer_id = await sync.create_or_retrieve_customer(
            email=current_user.email,
            uuid=current_user.user_id,
        )
    except SyncError as e:
        logger.error("Customer sync failed for user %s: %s", current_user.user_id, e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return CustomerResponse(success=True, stripe_customer_id=customer_id)
