from __future__ import annotations

from typing import Generator

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from stockledger.app.core.config import Settings
from stockledger.services.inventory import InventoryLedger
from stockledger.services.procurement import ProcurementService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Generator:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(
    settings: Settings = Depends(get_settings),
    x_actor_id: int | None = Header(default=None, alias="X-Actor-Id"),
) -> int:
    # identity is established upstream; we only attribute movements to it
    return x_actor_id if x_actor_id is not None else settings.SYSTEM_ACTOR_ID


def get_inventory(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> InventoryLedger:
    return InventoryLedger(db, request.app.state.locks, lock_timeout=settings.LOCK_TIMEOUT_SECONDS)


def get_procurement(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ProcurementService:
    return ProcurementService(
        db,
        request.app.state.locks,
        lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
        po_number_prefix=settings.PO_NUMBER_PREFIX,
    )
