from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from stockledger.app.api.deps import get_inventory
from stockledger.app.schemas.stock_level import StockMovementRead
from stockledger.services import derivations
from stockledger.services.inventory import InventoryLedger

router = APIRouter(prefix="/stock-movements")


@router.get("", response_model=list[StockMovementRead])
def list_movements(
    product_id: int | None = None,
    warehouse_id: int | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    inv: InventoryLedger = Depends(get_inventory),
):
    """
    Movement log (READ ONLY), newest first.
    """
    rows = inv.list_movements(product_id=product_id, warehouse_id=warehouse_id, limit=limit)
    return [
        StockMovementRead(
            id=mv.id,
            product_id=mv.product_id,
            warehouse_id=mv.warehouse_id,
            movement_type=mv.movement_type,
            quantity=mv.quantity,
            effective_quantity=derivations.effective_quantity(mv.movement_type, mv.quantity),
            reference_type=mv.reference_type,
            reference_id=mv.reference_id,
            reference_summary=derivations.reference_summary(mv.reference_type, mv.reference_id),
            movement_summary=derivations.movement_summary(mv.movement_type, mv.quantity, mv.product.name),
            notes=mv.notes,
            created_by=mv.created_by,
            created_at=mv.created_at,
        )
        for mv in rows
    ]
