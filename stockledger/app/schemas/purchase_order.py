from datetime import date, datetime

from pydantic import BaseModel

from stockledger.app.db.models.core_types import ItemReceiptStatus, POStatus


class PurchaseOrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: float
    total_price: float
    received_quantity: int
    remaining_quantity: int
    receipt_status: ItemReceiptStatus
    received_percentage: int


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    status: POStatus
    total_amount: float
    formatted_total: str
    order_date: date | None = None
    expected_delivery_date: date | None = None
    actual_delivery_date: date | None = None
    is_overdue: bool
    days_until_delivery: int | None = None
    created_by: int
    summary: str
    created_at: datetime
    items: list[PurchaseOrderItemRead]
