"""
Pure derivations over stock records, movements and purchase orders.

Nothing here touches the database; every function takes plain values or
already-loaded rows and returns a value. The ledger decides, these only describe.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from stockledger.app.db.models.core_types import (
    ItemReceiptStatus,
    MovementType,
    POStatus,
    ReferenceType,
    StockStatus,
)

CENT = Decimal("0.01")

REFERENCE_LABELS = {
    ReferenceType.purchase_order: "Purchase Order",
    ReferenceType.sale: "Sale",
    ReferenceType.transfer: "Transfer",
    ReferenceType.adjustment: "Adjustment",
}


# ---------- stock ----------
def stock_status(available_quantity: int, reorder_point: int | None) -> StockStatus:
    """
    out_of_stock when nothing is available, low_stock at or under the reorder
    point, in_stock otherwise. A missing or zero reorder point never yields
    low_stock.
    """
    if available_quantity <= 0:
        return StockStatus.out_of_stock
    if reorder_point and available_quantity <= reorder_point:
        return StockStatus.low_stock
    return StockStatus.in_stock


def stock_percentage(available_quantity: int, max_stock: int | None) -> int | None:
    if not max_stock:
        return None
    return int((Decimal(available_quantity) * 100 / Decimal(max_stock)).quantize(Decimal(1), ROUND_HALF_UP))


def formatted_quantity(quantity: int, reserved_quantity: int) -> str:
    available = quantity - reserved_quantity
    return f"{available} available ({quantity} total, {reserved_quantity} reserved)"


# ---------- movements ----------
def effective_quantity(movement_type: MovementType, quantity: int) -> int:
    """Signed quantity: inbound and adjustment entries count up, the rest down."""
    if movement_type in (MovementType.stock_in, MovementType.adjustment):
        return quantity
    return -quantity


def movement_summary(movement_type: MovementType, quantity: int, product_name: str | None = None) -> str:
    return f"{movement_type.value.upper()} {quantity} units of {product_name or 'Product'}"


def reference_summary(reference_type: ReferenceType | None, reference_id: str | None) -> str:
    if reference_type is None or not reference_id:
        return "Manual"
    return f"{REFERENCE_LABELS[reference_type]} #{reference_id[:8]}"


# ---------- money ----------
def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    return (Decimal(quantity) * Decimal(unit_price)).quantize(CENT, ROUND_HALF_UP)


def compute_total_amount(lines: Iterable[tuple[int, Decimal]]) -> Decimal:
    """Sum of quantity x unit_price over (quantity, unit_price) pairs, in cents."""
    total = sum((Decimal(q) * Decimal(p) for q, p in lines), Decimal("0"))
    return total.quantize(CENT, ROUND_HALF_UP)


def format_money(amount: Decimal | None) -> str:
    if amount is None:
        return "N/A"
    return f"${Decimal(amount).quantize(CENT, ROUND_HALF_UP)}"


# ---------- order items ----------
def item_receipt_status(quantity: int, received_quantity: int) -> ItemReceiptStatus:
    if received_quantity >= quantity:
        return ItemReceiptStatus.fully_received
    if received_quantity > 0:
        return ItemReceiptStatus.partially_received
    return ItemReceiptStatus.not_received


def received_percentage(quantity: int, received_quantity: int) -> int:
    if quantity == 0:
        return 0
    return int((Decimal(received_quantity) * 100 / Decimal(quantity)).quantize(Decimal(1), ROUND_HALF_UP))


# ---------- orders ----------
def derive_receipt_status(lines: Iterable[tuple[int, int]]) -> POStatus | None:
    """
    Order status implied by (quantity, received_quantity) pairs: received when
    every line is complete, partially_received when anything arrived, None when
    nothing has.
    """
    lines = list(lines)
    if lines and all(received >= quantity for quantity, received in lines):
        return POStatus.received
    if any(received > 0 for _, received in lines):
        return POStatus.partially_received
    return None


def is_overdue(expected_delivery_date: date | None, status: POStatus, today: date | None = None) -> bool:
    if expected_delivery_date is None or status in (POStatus.received, POStatus.cancelled):
        return False
    return (today or date.today()) > expected_delivery_date


def days_until_delivery(expected_delivery_date: date | None, today: date | None = None) -> int | None:
    if expected_delivery_date is None:
        return None
    return (expected_delivery_date - (today or date.today())).days


def order_summary(po_number: str, supplier_name: str | None, status: POStatus) -> str:
    return f"PO #{po_number} - {supplier_name or 'Supplier'} ({status.value})"
