"""Errors raised by the stock ledger and the purchase-order lifecycle.

Every error is a caller-facing validation failure: nothing has been written when
one of these is raised. Storage failures are never wrapped and surface as the
underlying SQLAlchemy exception.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


class LedgerError(Exception):
    code = "ledger_error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)


# ---------- stock ----------
class InvalidAmount(LedgerError):
    code = "invalid_amount"

    def __init__(self, amount: int):
        super().__init__(f"Amount must be a positive integer, got {amount!r}", amount=amount)


class InsufficientAvailableStock(LedgerError):
    code = "insufficient_available_stock"

    def __init__(self, product_id: int, warehouse_id: int, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient available stock for product {product_id} in warehouse "
            f"{warehouse_id}: requested {requested}, available {available}",
            product_id=product_id,
            warehouse_id=warehouse_id,
            requested=requested,
            available=available,
        )


class ReservationUnderflow(LedgerError):
    code = "reservation_underflow"

    def __init__(self, product_id: int, warehouse_id: int, requested: int, reserved: int):
        self.requested = requested
        self.reserved = reserved
        super().__init__(
            f"Cannot release {requested} units for product {product_id} in warehouse "
            f"{warehouse_id}: only {reserved} reserved",
            product_id=product_id,
            warehouse_id=warehouse_id,
            requested=requested,
            reserved=reserved,
        )


class DuplicateStockRecord(LedgerError):
    code = "duplicate_stock_record"

    def __init__(self, product_id: int, warehouse_id: int):
        super().__init__(
            f"Stock record already exists for product {product_id} in warehouse {warehouse_id}",
            product_id=product_id,
            warehouse_id=warehouse_id,
        )


class StockNotEmpty(LedgerError):
    code = "stock_not_empty"

    def __init__(self, product_id: int, warehouse_id: int, quantity: int):
        super().__init__(
            f"Cannot delete stock record for product {product_id} in warehouse "
            f"{warehouse_id} while it holds {quantity} units",
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity=quantity,
        )


class AdjustmentBelowReserved(LedgerError):
    code = "adjustment_below_reserved"

    def __init__(self, product_id: int, warehouse_id: int, new_quantity: int, reserved: int):
        self.new_quantity = new_quantity
        self.reserved = reserved
        super().__init__(
            f"Cannot set product {product_id} in warehouse {warehouse_id} to {new_quantity} "
            f"units while {reserved} are reserved",
            product_id=product_id,
            warehouse_id=warehouse_id,
            new_quantity=new_quantity,
            reserved=reserved,
        )


class InvalidTransfer(LedgerError):
    code = "invalid_transfer"

    def __init__(self, warehouse_id: int):
        super().__init__(
            f"Source and destination warehouse are the same ({warehouse_id})",
            warehouse_id=warehouse_id,
        )


# ---------- purchase orders ----------
class InvalidStatusTransition(LedgerError):
    code = "invalid_status_transition"

    def __init__(self, current: str | None, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition from {current} to {requested}",
            current=current,
            requested=requested,
        )


class OrderLocked(LedgerError):
    code = "order_locked"

    def __init__(self, order_id: int, status: str, action: str):
        super().__init__(
            f"Cannot {action} purchase order {order_id} in status '{status}'",
            order_id=order_id,
            status=status,
        )


class OrderNotReceivable(LedgerError):
    code = "order_not_receivable"

    def __init__(self, order_id: int, status: str):
        super().__init__(
            f"Purchase order {order_id} cannot receive goods in status '{status}'",
            order_id=order_id,
            status=status,
        )


class OverReceipt(LedgerError):
    code = "over_receipt"

    def __init__(self, order_item_id: int, requested: int, remaining: int):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Cannot receive {requested} units on order item {order_item_id}: "
            f"only {remaining} outstanding",
            order_item_id=order_item_id,
            requested=requested,
            remaining=remaining,
        )


class InvalidOrderItem(LedgerError):
    code = "invalid_order_item"

    def __init__(self, reason: str, index: int | None = None):
        context = {} if index is None else {"index": index}
        super().__init__(reason, **context)


# ---------- lookups ----------
class NotFound(LedgerError):
    code = "not_found"
    entity = "Record"

    def __init__(self, *key: Any):
        label = "/".join(str(k) for k in key)
        super().__init__(f"{self.entity} {label} not found", key=list(key))


class StockRecordNotFound(NotFound):
    code = "stock_record_not_found"
    entity = "Stock record"


class OrderNotFound(NotFound):
    code = "order_not_found"
    entity = "Purchase order"


class OrderItemNotFound(NotFound):
    code = "order_item_not_found"
    entity = "Purchase order item"


class ProductNotFound(NotFound):
    code = "product_not_found"
    entity = "Product"


class WarehouseNotFound(NotFound):
    code = "warehouse_not_found"
    entity = "Warehouse"


class SupplierNotFound(NotFound):
    code = "supplier_not_found"
    entity = "Supplier"


# ---------- concurrency ----------
class LedgerBusy(LedgerError):
    code = "ledger_busy"

    def __init__(self, key: tuple, timeout: float):
        super().__init__(
            f"Timed out after {timeout}s waiting for lock on {key!r}",
            key=list(key),
            timeout=timeout,
        )


def log_rejections(logger: logging.Logger) -> Callable[[F], F]:
    """Log ledger errors raised by the wrapped operation, then re-raise them."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except LedgerError as exc:
                logger.warning("%s rejected: %s [%s]", fn.__name__, exc.message, exc.code)
                raise

        return wrapper  # type: ignore[return-value]

    return decorator
