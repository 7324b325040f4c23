from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from stockledger.app.api.deps import get_actor_id, get_procurement
from stockledger.app.db.models.core_types import POStatus
from stockledger.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderItem
from stockledger.app.schemas.purchase_order import PurchaseOrderItemRead, PurchaseOrderRead
from stockledger.services import derivations
from stockledger.services.procurement import OrderItemInput, ProcurementService

router = APIRouter(prefix="/purchase-orders")


# ---------- Schemas ----------
# positivity is left to the service so it answers with invalid_order_item
class POItemCreate(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal


class POCreate(BaseModel):
    supplier_id: int
    expected_delivery_date: date | None = None
    order_date: date | None = None
    status: POStatus = POStatus.pending
    items: list[POItemCreate] = Field(default_factory=list)


class POUpdate(BaseModel):
    supplier_id: int | None = None
    order_date: date | None = None
    expected_delivery_date: date | None = None


class POItemsReplace(BaseModel):
    items: list[POItemCreate] = Field(default_factory=list)


class POStatusUpdate(BaseModel):
    status: POStatus


class ReceiveIn(BaseModel):
    amount: int = Field(ge=0)
    warehouse_id: int | None = None


# ---------- Helpers ----------
def _inputs(items: list[POItemCreate]) -> list[OrderItemInput]:
    return [
        OrderItemInput(product_id=it.product_id, quantity=it.quantity, unit_price=it.unit_price)
        for it in items
    ]


def _item_read(it: PurchaseOrderItem) -> PurchaseOrderItemRead:
    return PurchaseOrderItemRead(
        id=it.id,
        product_id=it.product_id,
        quantity=it.quantity,
        unit_price=float(it.unit_price),
        total_price=float(derivations.line_total(it.quantity, it.unit_price)),
        received_quantity=it.received_quantity,
        remaining_quantity=it.remaining_quantity,
        receipt_status=derivations.item_receipt_status(it.quantity, it.received_quantity),
        received_percentage=derivations.received_percentage(it.quantity, it.received_quantity),
    )


def _read(po: PurchaseOrder) -> PurchaseOrderRead:
    return PurchaseOrderRead(
        id=po.id,
        po_number=po.po_number,
        supplier_id=po.supplier_id,
        status=po.status,
        total_amount=float(po.total_amount),
        formatted_total=derivations.format_money(po.total_amount),
        order_date=po.order_date,
        expected_delivery_date=po.expected_delivery_date,
        actual_delivery_date=po.actual_delivery_date,
        is_overdue=derivations.is_overdue(po.expected_delivery_date, po.status),
        days_until_delivery=derivations.days_until_delivery(po.expected_delivery_date),
        created_by=po.created_by,
        summary=derivations.order_summary(po.po_number, po.supplier.name, po.status),
        created_at=po.created_at,
        items=[_item_read(it) for it in po.items],
    )


# ---------- Endpoints ----------
@router.post("", response_model=PurchaseOrderRead, status_code=201)
def create_po(
    payload: POCreate,
    svc: ProcurementService = Depends(get_procurement),
    actor_id: int = Depends(get_actor_id),
):
    po = svc.create_order(
        payload.supplier_id,
        payload.expected_delivery_date,
        _inputs(payload.items),
        actor_id=actor_id,
        order_date=payload.order_date,
        status=payload.status,
    )
    return _read(po)


@router.get("/{po_id}", response_model=PurchaseOrderRead)
def get_po(po_id: int, svc: ProcurementService = Depends(get_procurement)):
    return _read(svc.get_order(po_id))


@router.patch("/{po_id}", response_model=PurchaseOrderRead)
def update_po(po_id: int, payload: POUpdate, svc: ProcurementService = Depends(get_procurement)):
    po = svc.update_order(
        po_id,
        supplier_id=payload.supplier_id,
        order_date=payload.order_date,
        expected_delivery_date=payload.expected_delivery_date,
    )
    return _read(po)


@router.put("/{po_id}/items", response_model=PurchaseOrderRead)
def replace_po_items(po_id: int, payload: POItemsReplace, svc: ProcurementService = Depends(get_procurement)):
    return _read(svc.update_order_items(po_id, _inputs(payload.items)))


@router.post("/{po_id}/status", response_model=PurchaseOrderRead)
def update_po_status(po_id: int, payload: POStatusUpdate, svc: ProcurementService = Depends(get_procurement)):
    return _read(svc.update_order_status(po_id, payload.status))


@router.post("/items/{item_id}/receive", response_model=PurchaseOrderItemRead)
def receive_po_item(
    item_id: int,
    payload: ReceiveIn,
    svc: ProcurementService = Depends(get_procurement),
    actor_id: int = Depends(get_actor_id),
):
    item = svc.receive_items(item_id, payload.amount, actor_id=actor_id, warehouse_id=payload.warehouse_id)
    return _item_read(item)


@router.delete("/{po_id}", status_code=204)
def delete_po(po_id: int, svc: ProcurementService = Depends(get_procurement)):
    svc.delete_order(po_id)
    return Response(status_code=204)
