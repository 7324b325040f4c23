from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from stockledger.app.api.deps import get_actor_id, get_inventory
from stockledger.app.db.models.core_types import ReferenceType
from stockledger.app.db.models.models_v1 import StockLevel
from stockledger.app.schemas.stock_level import StockLevelRead
from stockledger.services import derivations
from stockledger.services.inventory import InventoryLedger

router = APIRouter(prefix="/stock")


# ---------- Schemas ----------
class StockRecordCreate(BaseModel):
    product_id: int
    warehouse_id: int


class QuantityIn(BaseModel):
    amount: int = Field(gt=0)


class MovementIn(QuantityIn):
    reference_type: ReferenceType | None = None
    reference_id: str | None = Field(default=None, max_length=64)
    notes: str | None = None


class AdjustIn(BaseModel):
    quantity: int = Field(ge=0)
    notes: str | None = None


class TransferCreate(BaseModel):
    product_id: int
    from_warehouse_id: int
    to_warehouse_id: int
    amount: int = Field(gt=0)
    notes: str | None = None


class TransferRead(BaseModel):
    source: StockLevelRead
    destination: StockLevelRead


# ---------- Helpers ----------
def _read(inv: InventoryLedger, sl: StockLevel) -> StockLevelRead:
    return StockLevelRead(
        product_id=sl.product_id,
        warehouse_id=sl.warehouse_id,
        quantity=sl.quantity,
        reserved_quantity=sl.reserved_quantity,
        available_quantity=sl.available_quantity,
        stock_status=inv.stock_status(sl),
        stock_percentage=derivations.stock_percentage(sl.available_quantity, sl.product.max_stock),
        formatted_quantity=derivations.formatted_quantity(sl.quantity, sl.reserved_quantity),
    )


# ---------- Endpoints ----------
@router.post("", response_model=StockLevelRead, status_code=201)
def create_stock_record(payload: StockRecordCreate, inv: InventoryLedger = Depends(get_inventory)):
    sl = inv.create_stock_record(payload.product_id, payload.warehouse_id)
    return _read(inv, sl)


@router.post("/transfer", response_model=TransferRead)
def transfer_stock(
    payload: TransferCreate,
    inv: InventoryLedger = Depends(get_inventory),
    actor_id: int = Depends(get_actor_id),
):
    src, dst = inv.transfer_stock(
        payload.product_id,
        payload.from_warehouse_id,
        payload.to_warehouse_id,
        payload.amount,
        actor_id=actor_id,
        notes=payload.notes,
    )
    return TransferRead(source=_read(inv, src), destination=_read(inv, dst))


@router.get("/low", response_model=list[StockLevelRead])
def list_low_stock(warehouse_id: int | None = None, inv: InventoryLedger = Depends(get_inventory)):
    return [_read(inv, sl) for sl in inv.low_stock_records(warehouse_id=warehouse_id)]


@router.get("/{product_id}/{warehouse_id}", response_model=StockLevelRead)
def get_stock_record(product_id: int, warehouse_id: int, inv: InventoryLedger = Depends(get_inventory)):
    return _read(inv, inv.get_stock_record(product_id, warehouse_id))


@router.delete("/{product_id}/{warehouse_id}", status_code=204)
def delete_stock_record(product_id: int, warehouse_id: int, inv: InventoryLedger = Depends(get_inventory)):
    inv.delete_stock_record(product_id, warehouse_id)
    return Response(status_code=204)


@router.post("/{product_id}/{warehouse_id}/add", response_model=StockLevelRead)
def add_stock(
    product_id: int,
    warehouse_id: int,
    payload: MovementIn,
    inv: InventoryLedger = Depends(get_inventory),
    actor_id: int = Depends(get_actor_id),
):
    sl = inv.add_stock(
        product_id,
        warehouse_id,
        payload.amount,
        actor_id=actor_id,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        notes=payload.notes,
    )
    return _read(inv, sl)


@router.post("/{product_id}/{warehouse_id}/remove", response_model=StockLevelRead)
def remove_stock(
    product_id: int,
    warehouse_id: int,
    payload: MovementIn,
    inv: InventoryLedger = Depends(get_inventory),
    actor_id: int = Depends(get_actor_id),
):
    sl = inv.remove_stock(
        product_id,
        warehouse_id,
        payload.amount,
        actor_id=actor_id,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        notes=payload.notes,
    )
    return _read(inv, sl)


@router.post("/{product_id}/{warehouse_id}/adjust", response_model=StockLevelRead)
def adjust_stock(
    product_id: int,
    warehouse_id: int,
    payload: AdjustIn,
    inv: InventoryLedger = Depends(get_inventory),
    actor_id: int = Depends(get_actor_id),
):
    sl = inv.adjust_stock(product_id, warehouse_id, payload.quantity, actor_id=actor_id, notes=payload.notes)
    return _read(inv, sl)


@router.post("/{product_id}/{warehouse_id}/reserve", response_model=StockLevelRead)
def reserve_stock(
    product_id: int,
    warehouse_id: int,
    payload: QuantityIn,
    inv: InventoryLedger = Depends(get_inventory),
):
    return _read(inv, inv.reserve_stock(product_id, warehouse_id, payload.amount))


@router.post("/{product_id}/{warehouse_id}/release", response_model=StockLevelRead)
def release_reserved_stock(
    product_id: int,
    warehouse_id: int,
    payload: QuantityIn,
    inv: InventoryLedger = Depends(get_inventory),
):
    return _read(inv, inv.release_reserved_stock(product_id, warehouse_id, payload.amount))
