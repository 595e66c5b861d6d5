import pytest
from sqlalchemy import Update, update
from sqlalchemy.exc import OperationalError

from niramay.core.exceptions import (
    InsufficientInventoryError,
    InsufficientPointsError,
    InventoryUpdateFailedError,
    InvalidAddressError,
    MissingAddressError,
    NotFoundError,
    PaymentFailedError,
    ValidationError,
)
from niramay.models import EcoStoreItem, Notification, Profile, Redemption, RewardTransaction
from niramay.services import ledger
from niramay.services.redemption import redeem, validate_delivery_address, validate_redemption

ADDRESS = "221 Park Street, Salt Lake, Kolkata"


@pytest.fixture
def item(db):
    row = EcoStoreItem(name="Steel Dustbin", point_cost=50, quantity=5, category="dustbins", image_url="x")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _nothing_written(db, user_id):
    return (
        db.query(Redemption).count() == 0
        and db.query(RewardTransaction).filter_by(user_id=user_id).count() == 0
    )


def test_successful_redemption_updates_balance_stock_and_ledger(db, make_profile, item):
    user = make_profile("citizen", eco_points=200)

    result = redeem(db, user.id, item.id, 3, ADDRESS)

    assert result.success is True
    assert result.order_details.total_points_spent == 150
    assert result.order_details.order_status == "pending"
    assert result.message == "Successfully redeemed 3x Steel Dustbin! Your order is being processed."

    db.expire_all()
    assert db.get(Profile, user.id).eco_points == 50
    assert db.get(EcoStoreItem, item.id).quantity == 2
    order = db.get(Redemption, result.order_id)
    assert order.delivery_address == ADDRESS
    assert [t.points for t in db.query(RewardTransaction).filter_by(user_id=user.id)] == [-150]
    assert db.query(Notification).filter_by(user_id=user.id, title="Redemption Confirmed").count() == 1


def test_debit_keeps_balance_equal_to_ledger(db, make_profile, item):
    user = make_profile("citizen")
    ledger.post_points(db, user.id, 120)
    db.commit()

    redeem(db, user.id, item.id, 2, ADDRESS)

    db.expire_all()
    assert db.get(Profile, user.id).eco_points == ledger.ledger_totals(db)[user.id] == 20


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_writes_nothing(db, make_profile, item, quantity):
    user = make_profile("citizen", eco_points=500)
    with pytest.raises(ValidationError) as exc:
        redeem(db, user.id, item.id, quantity, ADDRESS)
    assert exc.value.detail == "Quantity must be greater than 0"
    assert _nothing_written(db, user.id)


def test_insufficient_inventory_reports_stock(db, make_profile, item):
    user = make_profile("citizen", eco_points=10000)
    item.quantity = 3
    db.commit()

    with pytest.raises(InsufficientInventoryError) as exc:
        redeem(db, user.id, item.id, 5, ADDRESS)
    assert exc.value.detail == "Only 3 items available, but 5 requested"
    assert _nothing_written(db, user.id)


def test_insufficient_points(db, make_profile, item):
    user = make_profile("citizen", eco_points=99)
    with pytest.raises(InsufficientPointsError) as exc:
        redeem(db, user.id, item.id, 2, ADDRESS)
    assert exc.value.detail == "You need 100 eco-points but only have 99"
    db.expire_all()
    assert db.get(Profile, user.id).eco_points == 99
    assert db.get(EcoStoreItem, item.id).quantity == 5


def test_missing_address_uses_profile_default_or_fails(db, make_profile, item):
    homeless = make_profile("citizen", eco_points=500)
    with pytest.raises(MissingAddressError):
        redeem(db, homeless.id, item.id, 1, "   ")

    settled = make_profile("citizen", eco_points=500, address="5 Lake View Road, Kochi")
    result = redeem(db, settled.id, item.id, 1)
    assert result.order_details.delivery_address == "5 Lake View Road, Kochi"


def test_short_address_rejected_without_writes(db, make_profile, item):
    user = make_profile("citizen", eco_points=500)
    with pytest.raises(InvalidAddressError):
        redeem(db, user.id, item.id, 1, "Home")
    assert _nothing_written(db, user.id)


def test_inactive_or_unknown_item(db, make_profile, item):
    user = make_profile("citizen", eco_points=500)
    item.is_active = False
    db.commit()
    with pytest.raises(NotFoundError):
        redeem(db, user.id, item.id, 1, ADDRESS)
    with pytest.raises(NotFoundError):
        redeem(db, user.id, "no-such-item", 1, ADDRESS)


@pytest.mark.parametrize("address, reason", [
    ("", "Delivery address is required"),
    ("Flat 2", "Address must be at least 10 characters long"),
    ("MainStreetBlock", "Please provide a complete address with street, area, and city"),
    ("12 Main Street; Pune <b>", "Address contains invalid characters"),
])
def test_validate_delivery_address(address, reason):
    with pytest.raises(InvalidAddressError) as exc:
        validate_delivery_address(address)
    assert exc.value.detail == reason


def test_validate_delivery_address_trims():
    assert validate_delivery_address("  14 Civil Lines, Jaipur  ") == "14 Civil Lines, Jaipur"


def test_validate_redemption_is_read_only(db, make_profile, item):
    user = make_profile("citizen", eco_points=120, address=ADDRESS)

    ok = validate_redemption(db, user.id, item.id, 2)
    assert ok.can_redeem is True
    assert ok.required_points == 100

    short = validate_redemption(db, user.id, item.id, 3)
    assert short.can_redeem is False
    assert short.reason == "Insufficient eco-points (need 150, have 120)"

    assert validate_redemption(db, user.id, item.id, 6).reason == "Only 5 items in stock"
    assert validate_redemption(db, user.id, item.id, 0).can_redeem is False
    assert _nothing_written(db, user.id)


def test_post_points_refuses_overdraft(db, make_profile):
    user = make_profile("citizen", eco_points=10)
    assert ledger.post_points(db, user.id, -11) is False
    assert ledger.post_points(db, "missing", 5) is False
    assert ledger.post_points(db, user.id, -10) is True
    db.commit()
    db.expire_all()
    assert db.get(Profile, user.id).eco_points == 0


def test_ledger_totals_groups_by_user(db, make_profile):
    rich = make_profile("citizen")
    idle = make_profile("citizen")
    ledger.post_points(db, rich.id, 30)
    ledger.post_points(db, rich.id, 20)
    ledger.post_points(db, rich.id, -15)
    db.commit()

    totals = ledger.ledger_totals(db)
    assert totals[rich.id] == 35
    assert idle.id not in totals


# --- Rollback paths: a failure after the order row is flushed leaves no trace ---

def _assert_rolled_back(db, user_id, item_id, balance, stock):
    db.expire_all()
    assert _nothing_written(db, user_id)
    assert db.get(Profile, user_id).eco_points == balance
    assert db.get(EcoStoreItem, item_id).quantity == stock


def _fail_stock_update(db, monkeypatch, sell_out_first=False):
    """Makes the conditional stock decrement fail, or match no rows."""
    original = db.execute

    def execute(stmt, *args, **kwargs):
        if isinstance(stmt, Update) and stmt.table.name == "eco_store_items":
            if not sell_out_first:
                raise OperationalError("UPDATE eco_store_items", {}, Exception("database is locked"))
            original(update(EcoStoreItem).values(quantity=0).execution_options(synchronize_session=False))
        return original(stmt, *args, **kwargs)

    monkeypatch.setattr(db, "execute", execute)


def test_debit_error_rolls_back_order(db, make_profile, item, monkeypatch):
    user = make_profile("citizen", eco_points=200)

    def broken_post_points(*args, **kwargs):
        raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "post_points", broken_post_points)

    with pytest.raises(PaymentFailedError):
        redeem(db, user.id, item.id, 2, ADDRESS)
    _assert_rolled_back(db, user.id, item.id, balance=200, stock=5)


def test_balance_spent_concurrently_rolls_back_order(db, make_profile, item, monkeypatch):
    user = make_profile("citizen", eco_points=200)
    monkeypatch.setattr(ledger, "post_points", lambda *args, **kwargs: False)

    with pytest.raises(InsufficientPointsError) as exc:
        redeem(db, user.id, item.id, 2, ADDRESS)
    assert exc.value.detail == "You need 100 eco-points"
    _assert_rolled_back(db, user.id, item.id, balance=200, stock=5)


def test_item_sold_out_concurrently_rolls_back_debit(db, make_profile, item, monkeypatch):
    user = make_profile("citizen", eco_points=200)
    _fail_stock_update(db, monkeypatch, sell_out_first=True)

    with pytest.raises(InsufficientInventoryError) as exc:
        redeem(db, user.id, item.id, 2, ADDRESS)
    assert exc.value.detail == "The item sold out while processing your order"
    _assert_rolled_back(db, user.id, item.id, balance=200, stock=5)


def test_stock_update_error_rolls_back_debit(db, make_profile, item, monkeypatch):
    user = make_profile("citizen", eco_points=200)
    _fail_stock_update(db, monkeypatch)

    with pytest.raises(InventoryUpdateFailedError):
        redeem(db, user.id, item.id, 2, ADDRESS)
    _assert_rolled_back(db, user.id, item.id, balance=200, stock=5)
