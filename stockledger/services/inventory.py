from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, contains_eager, selectinload

from stockledger.app.db.models.models_v1 import (
    Product,
    Warehouse,
    StockLevel,
    StockMovement,
)
from stockledger.app.db.models.core_types import MovementType, ReferenceType, StockStatus
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
    log_rejections,
)
from stockledger.services.locks import KeyedLock, locked_transaction, stock_key

logger = logging.getLogger(__name__)


def _check_amount(amount: int) -> None:
    # bool is an int subclass; True must not sneak through as 1
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)


class InventoryLedger:
    """
    Stock mutations for (product, warehouse) records.

    Each public mutation holds the record's key lock, loads the row with
    SELECT ... FOR UPDATE, validates, writes the row plus its movement entry and
    commits. A rejected mutation leaves nothing behind.

    `apply_add` assumes the caller already holds the record's lock and owns the
    transaction; ProcurementService uses it to stock received goods.
    """

    def __init__(self, db: Session, locks: KeyedLock, *, lock_timeout: float = 10.0):
        self.db = db
        self.locks = locks
        self.lock_timeout = lock_timeout

    def _tx(self, *keys):
        return locked_transaction(self.db, self.locks, keys, timeout=self.lock_timeout)

    # ---------- lookups ----------
    def _lock_stock_level(self, product_id: int, warehouse_id: int) -> StockLevel | None:
        return (
            self.db.execute(
                select(StockLevel)
                .where(StockLevel.product_id == product_id)
                .where(StockLevel.warehouse_id == warehouse_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )

    def require_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def require_warehouse(self, warehouse_id: int) -> Warehouse:
        warehouse = self.db.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFound(warehouse_id)
        return warehouse

    def get_stock_record(self, product_id: int, warehouse_id: int) -> StockLevel:
        sl = self.db.get(StockLevel, (product_id, warehouse_id), populate_existing=True)
        if sl is None:
            raise StockRecordNotFound(product_id, warehouse_id)
        return sl

    def stock_status(self, sl: StockLevel) -> StockStatus:
        return derivations.stock_status(sl.available_quantity, sl.product.reorder_point)

    def list_movements(
        self,
        *,
        product_id: int | None = None,
        warehouse_id: int | None = None,
        limit: int = 100,
    ) -> list[StockMovement]:
        stmt = (
            select(StockMovement)
            .options(selectinload(StockMovement.product))
            .order_by(StockMovement.id.desc())
            .limit(limit)
        )
        if product_id is not None:
            stmt = stmt.where(StockMovement.product_id == product_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockMovement.warehouse_id == warehouse_id)
        return list(self.db.execute(stmt).scalars().all())

    def low_stock_records(self, *, warehouse_id: int | None = None) -> list[StockLevel]:
        """Records whose status is low_stock, least available first."""
        stmt = (
            select(StockLevel)
            .join(StockLevel.product)
            .options(contains_eager(StockLevel.product))
            .where(Product.reorder_point > 0)
            .execution_options(populate_existing=True)
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)

        rows = self.db.execute(stmt).scalars().all()
        low = [sl for sl in rows if self.stock_status(sl) == StockStatus.low_stock]
        return sorted(low, key=lambda sl: (sl.available_quantity, sl.product_id, sl.warehouse_id))

    # ---------- building blocks (lock held by caller) ----------
    def _get_or_create_stock_level(self, product_id: int, warehouse_id: int) -> StockLevel:
        sl = self._lock_stock_level(product_id, warehouse_id)
        if sl:
            return sl

        self.require_product(product_id)
        self.require_warehouse(warehouse_id)
        sl = StockLevel(
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity=0,
            reserved_quantity=0,
        )
        self.db.add(sl)
        self.db.flush()
        return sl

    def _record_movement(
        self,
        *,
        product_id: int,
        warehouse_id: int,
        movement_type: MovementType,
        quantity: int,
        actor_id: int,
        reference_type: ReferenceType | None = None,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        mv = StockMovement(
            product_id=product_id,
            warehouse_id=warehouse_id,
            movement_type=movement_type,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by=actor_id,
        )
        self.db.add(mv)
        return mv

    def apply_add(
        self,
        product_id: int,
        warehouse_id: int,
        amount: int,
        *,
        actor_id: int,
        reference_type: ReferenceType | None = None,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> StockLevel:
        sl = self._get_or_create_stock_level(product_id, warehouse_id)
        sl.quantity += amount
        self._record_movement(
            product_id=product_id,
            warehouse_id=warehouse_id,
            movement_type=MovementType.stock_in,
            quantity=amount,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
        )
        return sl

    # ---------- record lifecycle ----------
    @log_rejections(logger)
    def create_stock_record(self, product_id: int, warehouse_id: int) -> StockLevel:
        with self._tx(stock_key(product_id, warehouse_id)):
            self.require_product(product_id)
            self.require_warehouse(warehouse_id)
            if self._lock_stock_level(product_id, warehouse_id) is not None:
                raise DuplicateStockRecord(product_id, warehouse_id)

            sl = StockLevel(
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity=0,
                reserved_quantity=0,
            )
            self.db.add(sl)
            try:
                self.db.flush()
            except IntegrityError:
                # another process inserted the pair between our check and flush
                raise DuplicateStockRecord(product_id, warehouse_id) from None

        logger.info("stock record created product=%s warehouse=%s", product_id, warehouse_id)
        return sl

    @log_rejections(logger)
    def delete_stock_record(self, product_id: int, warehouse_id: int) -> None:
        with self._tx(stock_key(product_id, warehouse_id)):
            sl = self._lock_stock_level(product_id, warehouse_id)
            if sl is None:
                raise StockRecordNotFound(product_id, warehouse_id)
            if sl.quantity != 0:
                raise StockNotEmpty(product_id, warehouse_id, sl.quantity)
            self.db.delete(sl)

        logger.info("stock record deleted product=%s warehouse=%s", product_id, warehouse_id)

    # ---------- quantity operations ----------
    @log_rejections(logger)
    def add_stock(
        self,
        product_id: int,
        warehouse_id: int,
        amount: int,
        *,
        actor_id: int,
        reference_type: ReferenceType | None = None,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> StockLevel:
        _check_amount(amount)
        with self._tx(stock_key(product_id, warehouse_id)):
            sl = self.apply_add(
                product_id,
                warehouse_id,
                amount,
                actor_id=actor_id,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
            )

        logger.info(
            "stock in product=%s warehouse=%s amount=%s quantity=%s",
            product_id, warehouse_id, amount, sl.quantity,
        )
        return sl

    @log_rejections(logger)
    def remove_stock(
        self,
        product_id: int,
        warehouse_id: int,
        amount: int,
        *,
        actor_id: int,
        reference_type: ReferenceType | None = None,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> StockLevel:
        _check_amount(amount)
        with self._tx(stock_key(product_id, warehouse_id)):
            sl = self._lock_stock_level(product_id, warehouse_id)
            available = sl.available_quantity if sl else 0
            if available < amount:
                raise InsufficientAvailableStock(product_id, warehouse_id, amount, available)

            sl.quantity -= amount
            self._record_movement(
                product_id=product_id,
                warehouse_id=warehouse_id,
                movement_type=MovementType.stock_out,
                quantity=amount,
                actor_id=actor_id,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
            )

        logger.info(
            "stock out product=%s warehouse=%s amount=%s quantity=%s",
            product_id, warehouse_id, amount, sl.quantity,
        )
        return sl

    @log_rejections(logger)
    def adjust_stock(
        self,
        product_id: int,
        warehouse_id: int,
        new_quantity: int,
        *,
        actor_id: int,
        notes: str | None = None,
    ) -> StockLevel:
        """
        Set an existing record's quantity to a counted value.

        The delta is logged with reference type adjustment: an increase as an
        `adjustment` movement, a decrease as an `out` movement, so the signed
        effect of the log matches the change. Reserved units cannot be counted
        away. Setting the current quantity again writes nothing.
        """
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity < 0:
            raise InvalidAmount(new_quantity)

        with self._tx(stock_key(product_id, warehouse_id)):
            sl = self._lock_stock_level(product_id, warehouse_id)
            if sl is None:
                raise StockRecordNotFound(product_id, warehouse_id)
            if new_quantity < sl.reserved_quantity:
                raise AdjustmentBelowReserved(product_id, warehouse_id, new_quantity, sl.reserved_quantity)

            delta = new_quantity - sl.quantity
            if delta:
                sl.quantity = new_quantity
                self._record_movement(
                    product_id=product_id,
                    warehouse_id=warehouse_id,
                    movement_type=MovementType.adjustment if delta > 0 else MovementType.stock_out,
                    quantity=abs(delta),
                    actor_id=actor_id,
                    reference_type=ReferenceType.adjustment,
                    reference_id=uuid.uuid4().hex,
                    notes=notes,
                )

        logger.info(
            "stock adjusted product=%s warehouse=%s delta=%s quantity=%s",
            product_id, warehouse_id, delta, sl.quantity,
        )
        return sl

    @log_rejections(logger)
    def reserve_stock(self, product_id: int, warehouse_id: int, amount: int) -> StockLevel:
        _check_amount(amount)
        with self._tx(stock_key(product_id, warehouse_id)):
            sl = self._lock_stock_level(product_id, warehouse_id)
            available = sl.available_quantity if sl else 0
            if available < amount:
                raise InsufficientAvailableStock(product_id, warehouse_id, amount, available)

            sl.reserved_quantity += amount

        logger.info(
            "stock reserved product=%s warehouse=%s amount=%s reserved=%s",
            product_id, warehouse_id, amount, sl.reserved_quantity,
        )
        return sl

    @log_rejections(logger)
    def release_reserved_stock(self, product_id: int, warehouse_id: int, amount: int) -> StockLevel:
        _check_amount(amount)
        with self._tx(stock_key(product_id, warehouse_id)):
            sl = self._lock_stock_level(product_id, warehouse_id)
            reserved = sl.reserved_quantity if sl else 0
            if reserved < amount:
                raise ReservationUnderflow(product_id, warehouse_id, amount, reserved)

            sl.reserved_quantity -= amount

        logger.info(
            "stock released product=%s warehouse=%s amount=%s reserved=%s",
            product_id, warehouse_id, amount, sl.reserved_quantity,
        )
        return sl

    @log_rejections(logger)
    def transfer_stock(
        self,
        product_id: int,
        from_warehouse_id: int,
        to_warehouse_id: int,
        amount: int,
        *,
        actor_id: int,
        notes: str | None = None,
    ) -> tuple[StockLevel, StockLevel]:
        _check_amount(amount)
        if from_warehouse_id == to_warehouse_id:
            raise InvalidTransfer(from_warehouse_id)

        with self._tx(stock_key(product_id, from_warehouse_id), stock_key(product_id, to_warehouse_id)):
            src = self._lock_stock_level(product_id, from_warehouse_id)
            available = src.available_quantity if src else 0
            if available < amount:
                raise InsufficientAvailableStock(product_id, from_warehouse_id, amount, available)

            dst = self._get_or_create_stock_level(product_id, to_warehouse_id)

            src.quantity -= amount
            dst.quantity += amount

            transfer_ref = uuid.uuid4().hex
            self._record_movement(
                product_id=product_id,
                warehouse_id=from_warehouse_id,
                movement_type=MovementType.transfer,
                quantity=amount,
                actor_id=actor_id,
                reference_type=ReferenceType.transfer,
                reference_id=transfer_ref,
                notes=notes or f"to warehouse {to_warehouse_id}",
            )
            self._record_movement(
                product_id=product_id,
                warehouse_id=to_warehouse_id,
                movement_type=MovementType.transfer,
                quantity=amount,
                actor_id=actor_id,
                reference_type=ReferenceType.transfer,
                reference_id=transfer_ref,
                notes=notes or f"from warehouse {from_warehouse_id}",
            )

        logger.info(
            "stock transfer product=%s from=%s to=%s amount=%s",
            product_id, from_warehouse_id, to_warehouse_id, amount,
        )
        return src, dst
