import pytest
from sqlalchemy import func, select

from stockledger.app.db.models.core_types import MovementType, ReferenceType, StockStatus
from stockledger.app.db.models.models_v1 import ImmutableMovement, StockLevel, StockMovement
from stockledger.services import derivations
from stockledger.services.errors import (
    AdjustmentBelowReserved,
    DuplicateStockRecord,
    InsufficientAvailableStock,
    InvalidAmount,
    InvalidTransfer,
    ProductNotFound,
    ReservationUnderflow,
    StockNotEmpty,
    StockRecordNotFound,
    WarehouseNotFound,
)

ACTOR = 42


def _movement_count(db) -> int:
    return db.scalar(select(func.count()).select_from(StockMovement))


def test_reserve_up_to_available_quantity(inventory, product, warehouse):
    """
    GIVEN
    - a stock record with quantity=15, reserved=2 (available 13)

    THEN
    - reserving 14 fails and leaves the record untouched
    - reserving 13 succeeds and leaves nothing available
    """
    # ---------- ARRANGE ----------
    inventory.add_stock(product.id, warehouse.id, 15, actor_id=ACTOR)
    inventory.reserve_stock(product.id, warehouse.id, 2)

    # ---------- ACT / ASSERT ----------
    with pytest.raises(InsufficientAvailableStock) as exc:
        inventory.reserve_stock(product.id, warehouse.id, 14)
    assert exc.value.available == 13
    assert exc.value.requested == 14

    sl = inventory.get_stock_record(product.id, warehouse.id)
    assert (sl.quantity, sl.reserved_quantity) == (15, 2)

    sl = inventory.reserve_stock(product.id, warehouse.id, 13)
    assert (sl.quantity, sl.reserved_quantity, sl.available_quantity) == (15, 15, 0)


def test_add_stock_creates_record_and_movement(inventory, db_session, product, warehouse):
    sl = inventory.add_stock(
        product.id,
        warehouse.id,
        10,
        actor_id=ACTOR,
        reference_type=ReferenceType.adjustment,
        reference_id="cycle-count-7",
        notes="initial count",
    )
    assert (sl.quantity, sl.reserved_quantity) == (10, 0)

    (mv,) = inventory.list_movements(product_id=product.id)
    assert mv.movement_type == MovementType.stock_in
    assert mv.quantity == 10
    assert mv.warehouse_id == warehouse.id
    assert mv.reference_type == ReferenceType.adjustment
    assert mv.reference_id == "cycle-count-7"
    assert mv.notes == "initial count"
    assert mv.created_by == ACTOR


def test_add_stock_accumulates(inventory, product, warehouse):
    inventory.add_stock(product.id, warehouse.id, 4, actor_id=ACTOR)
    sl = inventory.add_stock(product.id, warehouse.id, 6, actor_id=ACTOR)
    assert sl.quantity == 10
    assert len(inventory.list_movements(product_id=product.id, warehouse_id=warehouse.id)) == 2


def test_add_stock_unknown_product_or_warehouse(inventory, db_session, product, warehouse):
    with pytest.raises(ProductNotFound):
        inventory.add_stock(999_999, warehouse.id, 1, actor_id=ACTOR)
    with pytest.raises(WarehouseNotFound):
        inventory.add_stock(product.id, 999_999, 1, actor_id=ACTOR)
    assert db_session.scalar(select(func.count()).select_from(StockLevel)) == 0
    assert _movement_count(db_session) == 0


@pytest.mark.parametrize("amount", [0, -3, True, 2.5, "4"])
def test_non_positive_or_non_integer_amounts_are_rejected(inventory, db_session, product, warehouse, amount):
    inventory.add_stock(product.id, warehouse.id, 10, actor_id=ACTOR)
    before = _movement_count(db_session)

    with pytest.raises(InvalidAmount):
        inventory.add_stock(product.id, warehouse.id, amount, actor_id=ACTOR)
    with pytest.raises(InvalidAmount):
        inventory.remove_stock(product.id, warehouse.id, amount, actor_id=ACTOR)
    with pytest.raises(InvalidAmount):
        inventory.reserve_stock(product.id, warehouse.id, amount)
    with pytest.raises(InvalidAmount):
        inventory.release_reserved_stock(product.id, warehouse.id, amount)

    sl = inventory.get_stock_record(product.id, warehouse.id)
    assert (sl.quantity, sl.reserved_quantity) == (10, 0)
    assert _movement_count(db_session) == before


def test_remove_stock_only_from_available(inventory, db_session, product, warehouse):
    """Reserved units cannot be removed; a failed removal writes nothing."""
    inventory.add_stock(product.id, warehouse.id, 10, actor_id=ACTOR)
    inventory.reserve_stock(product.id, warehouse.id, 4)

    with pytest.raises(InsufficientAvailableStock) as exc:
        inventory.remove_stock(product.id, warehouse.id, 7, actor_id=ACTOR)
    assert exc.value.available == 6

    sl = inventory.get_stock_record(product.id, warehouse.id)
    assert (sl.quantity, sl.reserved_quantity) == (10, 4)
    assert _movement_count(db_session) == 1

    sl = inventory.remove_stock(product.id, warehouse.id, 6, actor_id=ACTOR, notes="sold")
    assert (sl.quantity, sl.reserved_quantity, sl.available_quantity) == (4, 4, 0)

    latest = inventory.list_movements(product_id=product.id)[0]
    assert latest.movement_type == MovementType.stock_out
    assert latest.quantity == 6


def test_remove_from_missing_record_behaves_like_empty(inventory, db_session, product, warehouse):
    with pytest.raises(InsufficientAvailableStock) as exc:
        inventory.remove_stock(product.id, warehouse.id, 1, actor_id=ACTOR)
    assert exc.value.available == 0
    assert db_session.get(StockLevel, (product.id, warehouse.id)) is None


def test_release_reserved_stock(inventory, product, warehouse):
    inventory.add_stock(product.id, warehouse.id, 10, actor_id=ACTOR)
    inventory.reserve_stock(product.id, warehouse.id, 5)

    with pytest.raises(ReservationUnderflow) as exc:
        inventory.release_reserved_stock(product.id, warehouse.id, 6)
    assert exc.value.reserved == 5

    sl = inventory.release_reserved_stock(product.id, warehouse.id, 5)
    assert (sl.quantity, sl.reserved_quantity) == (10, 0)


def test_reservations_do_not_write_movements(inventory, db_session, product, warehouse):
    inventory.add_stock(product.id, warehouse.id, 10, actor_id=ACTOR)
    inventory.reserve_stock(product.id, warehouse.id, 3)
    inventory.release_reserved_stock(product.id, warehouse.id, 1)
    assert _movement_count(db_session) == 1


# ---------- record lifecycle ----------
def test_create_stock_record_once(inventory, product, warehouse):
    sl = inventory.create_stock_record(product.id, warehouse.id)
    assert (sl.quantity, sl.reserved_quantity) == (0, 0)

    with pytest.raises(DuplicateStockRecord):
        inventory.create_stock_record(product.id, warehouse.id)


def test_delete_stock_record_requires_zero_quantity(inventory, db_session, product, warehouse):
    inventory.add_stock(product.id, warehouse.id, 3, actor_id=ACTOR)

    with pytest.raises(StockNotEmpty):
        inventory.delete_stock_record(product.id, warehouse.id)

    inventory.remove_stock(product.id, warehouse.id, 3, actor_id=ACTOR)
    inventory.delete_stock_record(product.id, warehouse.id)

    with pytest.raises(StockRecordNotFound):
        inventory.get_stock_record(product.id, warehouse.id)
    # the movement log outlives the record
    assert _movement_count(db_session) == 2


def test_delete_missing_record(inventory, product, warehouse):
    with pytest.raises(StockRecordNotFound):
        inventory.delete_stock_record(product.id, warehouse.id)


# ---------- transfers ----------
def test_transfer_moves_available_units(inventory, product, make_warehouse):
    src_wh, dst_wh = make_warehouse(), make_warehouse()
    inventory.add_stock(product.id, src_wh.id, 10, actor_id=ACTOR)

    src, dst = inventory.transfer_stock(product.id, src_wh.id, dst_wh.id, 4, actor_id=ACTOR)
    assert src.quantity == 6
    assert dst.quantity == 4

    out_mv = inventory.list_movements(product_id=product.id, warehouse_id=src_wh.id)[0]
    in_mv = inventory.list_movements(product_id=product.id, warehouse_id=dst_wh.id)[0]
    assert out_mv.movement_type == in_mv.movement_type == MovementType.transfer
    assert out_mv.reference_type == ReferenceType.transfer
    assert out_mv.reference_id == in_mv.reference_id
    assert out_mv.quantity == in_mv.quantity == 4


def test_transfer_rejections_leave_both_sides_unchanged(inventory, db_session, product, make_warehouse):
    src_wh, dst_wh = make_warehouse(), make_warehouse()
    inventory.add_stock(product.id, src_wh.id, 5, actor_id=ACTOR)
    inventory.reserve_stock(product.id, src_wh.id, 2)

    with pytest.raises(InsufficientAvailableStock):
        inventory.transfer_stock(product.id, src_wh.id, dst_wh.id, 4, actor_id=ACTOR)
    with pytest.raises(InvalidTransfer):
        inventory.transfer_stock(product.id, src_wh.id, src_wh.id, 1, actor_id=ACTOR)
    with pytest.raises(WarehouseNotFound):
        inventory.transfer_stock(product.id, src_wh.id, 999_999, 1, actor_id=ACTOR)

    sl = inventory.get_stock_record(product.id, src_wh.id)
    assert (sl.quantity, sl.reserved_quantity) == (5, 2)
    assert db_session.get(StockLevel, (product.id, dst_wh.id)) is None
    assert _movement_count(db_session) == 1


# ---------- derived values ----------
def test_stock_status_follows_available_quantity(inventory, make_product, warehouse):
    product = make_product(reorder_point=10)

    sl = inventory.add_stock(product.id, warehouse.id, 15, actor_id=ACTOR)
    assert inventory.stock_status(sl) == StockStatus.in_stock

    sl = inventory.reserve_stock(product.id, warehouse.id, 6)
    assert inventory.stock_status(sl) == StockStatus.low_stock

    sl = inventory.remove_stock(product.id, warehouse.id, 9, actor_id=ACTOR)
    assert sl.available_quantity == 0
    assert inventory.stock_status(sl) == StockStatus.out_of_stock


def test_movement_log_is_append_only(inventory, db_session, product, warehouse):
    inventory.add_stock(product.id, warehouse.id, 5, actor_id=ACTOR)
    (mv,) = inventory.list_movements(product_id=product.id)

    mv.quantity = 50
    with pytest.raises(ImmutableMovement):
        db_session.commit()
    db_session.rollback()

    db_session.delete(db_session.get(StockMovement, mv.id))
    with pytest.raises(ImmutableMovement):
        db_session.commit()
    db_session.rollback()

    assert db_session.get(StockMovement, mv.id, populate_existing=True).quantity == 5


def test_list_movements_newest_first_and_limited(inventory, product, warehouse):
    for n in (1, 2, 3):
        inventory.add_stock(product.id, warehouse.id, n, actor_id=ACTOR)

    rows = inventory.list_movements(product_id=product.id, limit=2)
    assert [mv.quantity for mv in rows] == [3, 2]


# ---------- counted adjustments ----------
def test_adjust_stock_logs_signed_deltas(inventory, db_session, product, warehouse):
    """
    GIVEN
    - 10 units on hand, 3 reserved

    THEN
    - counting 2 is rejected (below the reservation)
    - counting 14 logs +4 as an adjustment, counting 5 logs -9 as out
    - the signed log adds up to the counted quantity
    """
    # ---------- ARRANGE ----------
    inventory.add_stock(product.id, warehouse.id, 10, actor_id=ACTOR)
    inventory.reserve_stock(product.id, warehouse.id, 3)

    # ---------- ACT / ASSERT ----------
    with pytest.raises(AdjustmentBelowReserved):
        inventory.adjust_stock(product.id, warehouse.id, 2, actor_id=ACTOR)
    assert inventory.get_stock_record(product.id, warehouse.id).quantity == 10

    sl = inventory.adjust_stock(product.id, warehouse.id, 14, actor_id=ACTOR, notes="recount")
    assert (sl.quantity, sl.reserved_quantity) == (14, 3)
    up = inventory.list_movements(product_id=product.id)[0]
    assert up.movement_type == MovementType.adjustment
    assert up.quantity == 4
    assert up.reference_type == ReferenceType.adjustment
    assert up.notes == "recount"

    sl = inventory.adjust_stock(product.id, warehouse.id, 5, actor_id=ACTOR)
    assert sl.quantity == 5
    down = inventory.list_movements(product_id=product.id)[0]
    assert down.movement_type == MovementType.stock_out
    assert down.quantity == 9
    assert down.reference_type == ReferenceType.adjustment

    log = inventory.list_movements(product_id=product.id, warehouse_id=warehouse.id)
    assert sum(derivations.effective_quantity(mv.movement_type, mv.quantity) for mv in log) == 5


def test_adjust_to_same_quantity_writes_nothing(inventory, db_session, product, warehouse):
    inventory.add_stock(product.id, warehouse.id, 6, actor_id=ACTOR)
    sl = inventory.adjust_stock(product.id, warehouse.id, 6, actor_id=ACTOR)
    assert sl.quantity == 6
    assert _movement_count(db_session) == 1


def test_adjust_rejections(inventory, product, warehouse):
    with pytest.raises(StockRecordNotFound):
        inventory.adjust_stock(product.id, warehouse.id, 3, actor_id=ACTOR)

    inventory.create_stock_record(product.id, warehouse.id)
    for bad in (-1, True, 2.0):
        with pytest.raises(InvalidAmount):
            inventory.adjust_stock(product.id, warehouse.id, bad, actor_id=ACTOR)

    sl = inventory.adjust_stock(product.id, warehouse.id, 0, actor_id=ACTOR)
    assert sl.quantity == 0


# ---------- low stock ----------
def test_low_stock_records(inventory, make_product, make_warehouse):
    main, other = make_warehouse(), make_warehouse()
    low_a = make_product(reorder_point=10)
    low_b = make_product(reorder_point=5)
    plenty = make_product(reorder_point=10)
    no_point = make_product(reorder_point=None)
    empty = make_product(reorder_point=10)

    inventory.add_stock(low_a.id, main.id, 8, actor_id=ACTOR)
    inventory.reserve_stock(low_a.id, main.id, 4)
    inventory.add_stock(low_b.id, main.id, 2, actor_id=ACTOR)
    inventory.add_stock(plenty.id, main.id, 50, actor_id=ACTOR)
    inventory.add_stock(no_point.id, main.id, 1, actor_id=ACTOR)
    inventory.create_stock_record(empty.id, main.id)
    inventory.add_stock(low_a.id, other.id, 3, actor_id=ACTOR)

    rows = inventory.low_stock_records(warehouse_id=main.id)
    assert [(sl.product_id, sl.available_quantity) for sl in rows] == [(low_b.id, 2), (low_a.id, 4)]

    everywhere = inventory.low_stock_records()
    assert [(sl.product_id, sl.warehouse_id) for sl in everywhere] == [
        (low_b.id, main.id),
        (low_a.id, other.id),
        (low_a.id, main.id),
    ]
