from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from niramay.api.deps import get_current_user
from niramay.core.database import get_db
from niramay.models import Profile
from niramay.schemas.schemas import (
    RedemptionCheck,
    RedemptionOut,
    RedemptionRequest,
    RedemptionResult,
    StoreItemOut,
)
from niramay.services import redemption as redemption_service
from niramay.services.mailer import send_order_confirmation

router = APIRouter(prefix="/store", tags=["store"])


@router.get("/items/", response_model=List[StoreItemOut])
async def available_items(db: Session = Depends(get_db)):
    return redemption_service.list_available_items(db)


@router.get("/items/{item_id}/check/", response_model=RedemptionCheck)
async def check_redemption(
    item_id: str,
    quantity: int = Query(1),
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return redemption_service.validate_redemption(db, current_user.id, item_id, quantity)


@router.post("/redeem/", response_model=RedemptionResult)
async def redeem_item(
    payload: RedemptionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Exchange eco-points for a store item. Business-rule failures surface as 4xx JSON."""
    result = redemption_service.redeem(
        db, current_user.id, payload.item_id, payload.quantity, payload.delivery_address
    )

    if current_user.email:
        details = result.order_details
        background_tasks.add_task(
            send_order_confirmation,
            current_user.email,
            current_user.name,
            result.order_id,
            details.item_name,
            details.quantity,
            details.total_points_spent,
            details.delivery_address,
        )
    return result


@router.get("/redemptions/", response_model=List[RedemptionOut])
async def my_redemptions(db: Session = Depends(get_db), current_user: Profile = Depends(get_current_user)):
    return redemption_service.list_user_redemptions(db, current_user.id)
