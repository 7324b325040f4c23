from datetime import datetime

from pydantic import BaseModel

from stockledger.app.db.models.core_types import MovementType, ReferenceType, StockStatus


class StockLevelRead(BaseModel):
    product_id: int
    warehouse_id: int

    quantity: int
    reserved_quantity: int
    available_quantity: int  # READ ONLY: quantity - reserved_quantity, never stored
    stock_status: StockStatus
    stock_percentage: int | None = None
    formatted_quantity: str

    class Config:
        from_attributes = True


class StockMovementRead(BaseModel):
    id: int
    product_id: int
    warehouse_id: int
    movement_type: MovementType
    quantity: int
    effective_quantity: int
    reference_type: ReferenceType | None = None
    reference_id: str | None = None
    reference_summary: str
    movement_summary: str
    notes: str | None = None
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True
