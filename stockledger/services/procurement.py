"""
Procurement service.

Purchase-order lifecycle: creation, item edits, status transitions and
receiving. Stock quantities are only ever touched through InventoryLedger.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from stockledger.app.db.models.models_v1 import (
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
)
from stockledger.app.db.models.core_types import POStatus, ReferenceType
from stockledger.services.derivations import CENT, compute_total_amount, derive_receipt_status
from stockledger.services.errors import (
    InvalidAmount,
    InvalidOrderItem,
    InvalidStatusTransition,
    OrderItemNotFound,
    OrderLocked,
    OrderNotFound,
    OrderNotReceivable,
    OverReceipt,
    SupplierNotFound,
    log_rejections,
)
from stockledger.services.inventory import InventoryLedger
from stockledger.services.locks import KeyedLock, locked_transaction, order_key, stock_key

logger = logging.getLogger(__name__)


TRANSITIONS: dict[POStatus, frozenset[POStatus]] = {
    POStatus.draft: frozenset({POStatus.pending, POStatus.cancelled}),
    POStatus.pending: frozenset({POStatus.approved, POStatus.cancelled}),
    POStatus.approved: frozenset({POStatus.ordered, POStatus.cancelled}),
    POStatus.ordered: frozenset({POStatus.partially_received, POStatus.received}),
    POStatus.partially_received: frozenset({POStatus.received}),
    POStatus.received: frozenset(),
    POStatus.cancelled: frozenset(),
}

CREATABLE_STATUSES = frozenset({POStatus.draft, POStatus.pending})

# items (and therefore total_amount) may change only before the order is placed
ITEM_EDITABLE_STATUSES = frozenset({POStatus.draft, POStatus.pending, POStatus.approved})

LOCKED_STATUSES = frozenset({POStatus.received, POStatus.cancelled})

DELETABLE_STATUSES = frozenset({POStatus.draft, POStatus.pending})

RECEIVABLE_STATUSES = frozenset({POStatus.ordered, POStatus.partially_received, POStatus.received})

# Numeric(12, 2)
MAX_UNIT_PRICE = Decimal("10000000000")


@dataclass(frozen=True)
class OrderItemInput:
    product_id: int
    quantity: int
    unit_price: Decimal


def can_transition(current: POStatus, new: POStatus) -> bool:
    return new in TRANSITIONS[current]


def generate_po_number(prefix: str = "PO") -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:6].upper()}"


class ProcurementService:
    def __init__(
        self,
        db: Session,
        locks: KeyedLock,
        *,
        lock_timeout: float = 10.0,
        po_number_prefix: str = "PO",
    ):
        self.db = db
        self.locks = locks
        self.lock_timeout = lock_timeout
        self.po_number_prefix = po_number_prefix
        self.inventory = InventoryLedger(db, locks, lock_timeout=lock_timeout)

    def _tx(self, *keys):
        return locked_transaction(self.db, self.locks, keys, timeout=self.lock_timeout)

    # ---------- lookups ----------
    def _lock_order(self, order_id: int) -> PurchaseOrder:
        po = (
            self.db.execute(
                select(PurchaseOrder)
                .where(PurchaseOrder.id == order_id)
                .options(selectinload(PurchaseOrder.items))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )
        if po is None:
            raise OrderNotFound(order_id)
        return po

    def _require_supplier(self, supplier_id: int) -> Supplier:
        supplier = self.db.get(Supplier, supplier_id)
        if supplier is None:
            raise SupplierNotFound(supplier_id)
        return supplier

    def get_order(self, order_id: int) -> PurchaseOrder:
        po = (
            self.db.execute(
                select(PurchaseOrder)
                .where(PurchaseOrder.id == order_id)
                .options(selectinload(PurchaseOrder.items))
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )
        if po is None:
            raise OrderNotFound(order_id)
        return po

    # ---------- validation ----------
    def _validate_items(self, items: Iterable[OrderItemInput]) -> list[OrderItemInput]:
        items = list(items)
        if not items:
            raise InvalidOrderItem("Purchase order must have at least one item")

        validated = []
        for idx, item in enumerate(items):
            qty = item.quantity
            if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
                raise InvalidOrderItem(f"Item {idx}: quantity must be a positive integer", idx)

            try:
                price = Decimal(str(item.unit_price))
            except InvalidOperation:
                raise InvalidOrderItem(f"Item {idx}: unit_price is not a number", idx) from None
            if not price.is_finite() or price <= 0:
                raise InvalidOrderItem(f"Item {idx}: unit_price must be positive", idx)
            if price >= MAX_UNIT_PRICE:
                raise InvalidOrderItem(f"Item {idx}: unit_price must be below {MAX_UNIT_PRICE}", idx)
            # the column holds cents; anything finer would be rounded on write
            if price != price.quantize(CENT):
                raise InvalidOrderItem(f"Item {idx}: unit_price has more than two decimal places", idx)
            price = price.quantize(CENT)

            if self.db.get(Product, item.product_id) is None:
                raise InvalidOrderItem(f"Product with ID {item.product_id} not found", idx)

            validated.append(OrderItemInput(product_id=item.product_id, quantity=qty, unit_price=price))
        return validated

    @staticmethod
    def _build_items(items: list[OrderItemInput]) -> list[PurchaseOrderItem]:
        return [
            PurchaseOrderItem(
                product_id=it.product_id,
                quantity=it.quantity,
                unit_price=it.unit_price,
                received_quantity=0,
            )
            for it in items
        ]

    @staticmethod
    def _refresh_total(po: PurchaseOrder) -> None:
        po.total_amount = compute_total_amount((it.quantity, it.unit_price) for it in po.items)

    @staticmethod
    def _sync_receipt_status(po: PurchaseOrder) -> None:
        """Move an ordered / partially received order to the status its items imply."""
        if po.status not in (POStatus.ordered, POStatus.partially_received):
            return
        derived = derive_receipt_status((it.quantity, it.received_quantity) for it in po.items)
        if derived is None or derived == po.status:
            return
        po.status = derived
        if derived == POStatus.received:
            po.actual_delivery_date = date.today()

    # ---------- order lifecycle ----------
    @log_rejections(logger)
    def create_order(
        self,
        supplier_id: int,
        expected_delivery_date: date | None,
        items: Iterable[OrderItemInput],
        *,
        actor_id: int,
        order_date: date | None = None,
        status: POStatus = POStatus.pending,
    ) -> PurchaseOrder:
        if status not in CREATABLE_STATUSES:
            raise InvalidStatusTransition(None, POStatus(status).value)

        with self._tx():
            self._require_supplier(supplier_id)
            validated = self._validate_items(items)

            po = PurchaseOrder(
                po_number=generate_po_number(self.po_number_prefix),
                supplier_id=supplier_id,
                status=status,
                order_date=order_date or date.today(),
                expected_delivery_date=expected_delivery_date,
                created_by=actor_id,
            )
            po.items = self._build_items(validated)
            self._refresh_total(po)
            self.db.add(po)
            self.db.flush()

        logger.info(
            "purchase order created id=%s po_number=%s items=%s total=%s",
            po.id, po.po_number, len(po.items), po.total_amount,
        )
        return po

    @log_rejections(logger)
    def update_order(
        self,
        order_id: int,
        *,
        supplier_id: int | None = None,
        order_date: date | None = None,
        expected_delivery_date: date | None = None,
    ) -> PurchaseOrder:
        with self._tx(order_key(order_id)):
            po = self._lock_order(order_id)
            if po.status in LOCKED_STATUSES:
                raise OrderLocked(po.id, po.status.value, "update")

            if supplier_id is not None:
                po.supplier = self._require_supplier(supplier_id)
            if order_date is not None:
                po.order_date = order_date
            if expected_delivery_date is not None:
                po.expected_delivery_date = expected_delivery_date

        logger.info("purchase order updated id=%s", po.id)
        return po

    @log_rejections(logger)
    def update_order_items(self, order_id: int, items: Iterable[OrderItemInput]) -> PurchaseOrder:
        with self._tx(order_key(order_id)):
            po = self._lock_order(order_id)
            if po.status not in ITEM_EDITABLE_STATUSES:
                raise OrderLocked(po.id, po.status.value, "edit items of")

            validated = self._validate_items(items)
            # delete-orphan drops the previous lines on flush
            po.items = self._build_items(validated)
            self._refresh_total(po)
            self.db.flush()

        logger.info(
            "purchase order items replaced id=%s items=%s total=%s",
            po.id, len(po.items), po.total_amount,
        )
        return po

    @log_rejections(logger)
    def update_order_status(self, order_id: int, new_status: POStatus) -> PurchaseOrder:
        new_status = POStatus(new_status)
        with self._tx(order_key(order_id)):
            po = self._lock_order(order_id)
            current = po.status
            if not can_transition(current, new_status):
                raise InvalidStatusTransition(current.value, new_status.value)

            po.status = new_status
            if new_status == POStatus.received:
                po.actual_delivery_date = date.today()

        logger.info("purchase order status id=%s %s -> %s", po.id, current.value, new_status.value)
        return po

    @log_rejections(logger)
    def delete_order(self, order_id: int) -> None:
        with self._tx(order_key(order_id)):
            po = self._lock_order(order_id)
            if po.status not in DELETABLE_STATUSES:
                raise OrderLocked(po.id, po.status.value, "delete")
            self.db.delete(po)

        logger.info("purchase order deleted id=%s", order_id)

    # ---------- receiving ----------
    @log_rejections(logger)
    def receive_items(
        self,
        order_item_id: int,
        amount: int,
        *,
        actor_id: int,
        warehouse_id: int | None = None,
    ) -> PurchaseOrderItem:
        """
        Record `amount` more units of an order item as received.

        The order's status follows the receipt: partially_received once anything
        has arrived, received once every item is complete. With `warehouse_id`
        the units are also stocked into that warehouse in the same transaction.
        A zero amount changes nothing.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmount(amount)

        found = self.db.get(PurchaseOrderItem, order_item_id)
        if found is None:
            raise OrderItemNotFound(order_item_id)
        order_id, product_id = found.purchase_order_id, found.product_id

        keys = [order_key(order_id)]
        if warehouse_id is not None:
            keys.append(stock_key(product_id, warehouse_id))

        with self._tx(*keys):
            po = self._lock_order(order_id)
            item = next((it for it in po.items if it.id == order_item_id), None)
            if item is None:
                raise OrderItemNotFound(order_item_id)
            if po.status not in RECEIVABLE_STATUSES:
                raise OrderNotReceivable(po.id, po.status.value)

            remaining = item.quantity - item.received_quantity
            if amount > remaining:
                raise OverReceipt(item.id, amount, remaining)
            if warehouse_id is not None:
                self.inventory.require_warehouse(warehouse_id)

            if amount:
                item.received_quantity += amount
                if warehouse_id is not None:
                    self.inventory.apply_add(
                        product_id,
                        warehouse_id,
                        amount,
                        actor_id=actor_id,
                        reference_type=ReferenceType.purchase_order,
                        reference_id=str(po.id),
                        notes=f"Received on {po.po_number}",
                    )
            self._sync_receipt_status(po)

        logger.info(
            "order item received item=%s order=%s amount=%s received=%s/%s status=%s",
            item.id, po.id, amount, item.received_quantity, item.quantity, po.status.value,
        )
        return item
