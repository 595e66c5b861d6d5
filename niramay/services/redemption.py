"""
Eco Store redemption.

A redemption turns eco-points into a store order. The order row, the points
debit (with its ledger entry) and the stock decrement are written in one
database transaction; if any of them fails the whole order is rolled back.
The in-app notification and the confirmation email happen after commit and
are best-effort.
"""
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from niramay.core.config import settings
from niramay.core.exceptions import (
    InsufficientInventoryError,
    InsufficientPointsError,
    InvalidAddressError,
    InventoryUpdateFailedError,
    MissingAddressError,
    NotFoundError,
    PaymentFailedError,
    TransactionFailedError,
    ValidationError,
)
from niramay.models import EcoStoreItem, Profile, Redemption
from niramay.schemas.schemas import (
    OrderDetails,
    RedemptionCheck,
    RedemptionOut,
    RedemptionResult,
    RedemptionStatus,
)
from niramay.services import ledger
from niramay.services import notifications

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^[a-zA-Z0-9\s,.\-]+$")


def validate_delivery_address(address: Optional[str]) -> str:
    """Returns the trimmed address or raises InvalidAddressError."""
    trimmed = (address or "").strip()
    if not trimmed:
        raise InvalidAddressError("Invalid delivery address", "Delivery address is required")
    if len(trimmed) < settings.MIN_ADDRESS_LENGTH:
        raise InvalidAddressError(
            "Invalid delivery address",
            f"Address must be at least {settings.MIN_ADDRESS_LENGTH} characters long",
        )
    if len(trimmed.split()) < settings.MIN_ADDRESS_TOKENS:
        raise InvalidAddressError(
            "Invalid delivery address",
            "Please provide a complete address with street, area, and city",
        )
    if not ADDRESS_PATTERN.match(trimmed):
        raise InvalidAddressError("Invalid delivery address", "Address contains invalid characters")
    return trimmed


def _active_item(db: Session, item_id: str) -> Optional[EcoStoreItem]:
    return db.query(EcoStoreItem).filter(EcoStoreItem.id == item_id, EcoStoreItem.is_active.is_(True)).first()


def redeem(
    db: Session,
    user_id: str,
    item_id: str,
    quantity: int,
    delivery_address: Optional[str] = None,
) -> RedemptionResult:
    logger.info("Processing redemption for user %s, item %s x%s", user_id, item_id, quantity)

    if quantity <= 0:
        raise ValidationError("Invalid quantity", "Quantity must be greater than 0")

    user = db.query(Profile).filter(Profile.id == user_id).first()
    if not user:
        raise NotFoundError("User not found", "Unable to retrieve user information")

    item = _active_item(db, item_id)
    if not item:
        raise NotFoundError("Item not found", "The requested item is not available")

    if item.quantity < quantity:
        raise InsufficientInventoryError(
            "Insufficient inventory",
            f"Only {item.quantity} items available, but {quantity} requested",
        )

    required = item.point_cost * quantity
    if user.eco_points < required:
        raise InsufficientPointsError(
            "Insufficient eco-points",
            f"You need {required} eco-points but only have {user.eco_points}",
        )

    address = (delivery_address or "").strip() or (user.address or "").strip()
    if not address:
        raise MissingAddressError(
            "Delivery address required",
            "Please provide a delivery address or update your profile with a default address",
        )
    address = validate_delivery_address(address)
    item_name = item.name

    try:
        redemption = Redemption(
            user_id=user_id,
            item_id=item_id,
            quantity=quantity,
            total_points_spent=required,
            status=RedemptionStatus.pending.value,
            delivery_address=address,
        )
        db.add(redemption)
        db.flush()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error creating redemption record")
        raise TransactionFailedError("Failed to create order", "Unable to process your redemption request")

    try:
        debited = ledger.post_points(db, user_id, -required)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error deducting points for user %s", user_id)
        raise PaymentFailedError("Failed to process payment", "Unable to deduct eco-points from your account")
    if not debited:
        # Another redemption spent the balance between our read and this write
        db.rollback()
        raise InsufficientPointsError("Insufficient eco-points", f"You need {required} eco-points")

    try:
        stock = db.execute(
            update(EcoStoreItem)
            .where(EcoStoreItem.id == item_id, EcoStoreItem.quantity >= quantity)
            .values(quantity=EcoStoreItem.quantity - quantity, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error updating inventory for item %s", item_id)
        raise InventoryUpdateFailedError("Inventory update failed", "Unable to update item inventory")
    if stock.rowcount == 0:
        db.rollback()
        raise InsufficientInventoryError("Insufficient inventory", "The item sold out while processing your order")

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error committing redemption for user %s", user_id)
        raise TransactionFailedError("Failed to create order", "Unable to process your redemption request")

    db.refresh(redemption)
    notifications.notify(db, user_id, notifications.redemption_confirmed(item_name, required))

    logger.info("Redemption processed successfully: %s", redemption.id)
    return RedemptionResult(
        order_id=redemption.id,
        message=f"Successfully redeemed {quantity}x {item_name}! Your order is being processed.",
        order_details=OrderDetails(
            item_name=item_name,
            quantity=quantity,
            total_points_spent=required,
            delivery_address=address,
            order_status=redemption.status,
            redemption_date=redemption.created_at or datetime.now(timezone.utc),
        ),
    )


def validate_redemption(db: Session, user_id: str, item_id: str, quantity: int) -> RedemptionCheck:
    """Dry run of the redemption checks; writes nothing."""
    if quantity <= 0:
        return RedemptionCheck(can_redeem=False, reason="Quantity must be greater than 0")

    user = db.query(Profile).filter(Profile.id == user_id).first()
    if not user:
        return RedemptionCheck(can_redeem=False, reason="User not found")

    item = db.query(EcoStoreItem).filter(EcoStoreItem.id == item_id).first()
    if not item:
        return RedemptionCheck(can_redeem=False, reason="Item not found")
    if not item.is_active:
        return RedemptionCheck(can_redeem=False, reason="Item is not available")
    if item.quantity < quantity:
        return RedemptionCheck(can_redeem=False, reason=f"Only {item.quantity} items in stock")

    required = item.point_cost * quantity
    if user.eco_points < required:
        return RedemptionCheck(
            can_redeem=False,
            reason=f"Insufficient eco-points (need {required}, have {user.eco_points})",
            required_points=required,
        )
    if not user.address:
        return RedemptionCheck(can_redeem=False, reason="Delivery address required", required_points=required)

    return RedemptionCheck(can_redeem=True, required_points=required)


def list_available_items(db: Session) -> List[EcoStoreItem]:
    return (
        db.query(EcoStoreItem)
        .filter(EcoStoreItem.is_active.is_(True), EcoStoreItem.quantity > 0)
        .order_by(EcoStoreItem.point_cost.asc())
        .all()
    )


def list_user_redemptions(db: Session, user_id: str) -> List[RedemptionOut]:
    rows = (
        db.query(Redemption)
        .filter(Redemption.user_id == user_id)
        .order_by(Redemption.created_at.desc())
        .all()
    )
    return [
        RedemptionOut(
            id=r.id,
            item_id=r.item_id,
            item_name=r.item.name if r.item else None,
            quantity=r.quantity,
            total_points_spent=r.total_points_spent,
            status=r.status,
            delivery_address=r.delivery_address,
            created_at=r.created_at,
        )
        for r in rows
    ]
