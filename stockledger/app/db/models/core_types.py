import enum

class MovementType(str, enum.Enum):
    stock_in = "in"
    stock_out = "out"
    transfer = "transfer"
    adjustment = "adjustment"

class ReferenceType(str, enum.Enum):
    purchase_order = "purchase_order"
    sale = "sale"
    transfer = "transfer"
    adjustment = "adjustment"

class POStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    approved = "approved"
    ordered = "ordered"
    partially_received = "partially_received"
    received = "received"
    cancelled = "cancelled"

class StockStatus(str, enum.Enum):
    in_stock = "in_stock"
    low_stock = "low_stock"
    out_of_stock = "out_of_stock"

class ItemReceiptStatus(str, enum.Enum):
    not_received = "not_received"
    partially_received = "partially_received"
    fully_received = "fully_received"
