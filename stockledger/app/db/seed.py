from __future__ import annotations

import logging

from sqlalchemy import select

from stockledger.app.core.config import get_settings
from stockledger.app.core.logging import setup_logging
from stockledger.app.db.session import make_engine, make_session_factory
from stockledger.app.db.models.models_v1 import Product, Supplier, Warehouse

logger = logging.getLogger(__name__)


def run_seed(session_factory) -> None:
    db = session_factory()
    try:
        # 1) Warehouse
        warehouse = db.scalar(select(Warehouse).where(Warehouse.name == "Main Warehouse"))
        if not warehouse:
            db.add(Warehouse(name="Main Warehouse", capacity=10_000, active=True))

        # 2) Supplier
        supplier = db.scalar(select(Supplier).where(Supplier.name == "Acme Components"))
        if not supplier:
            db.add(Supplier(name="Acme Components", lead_time_days=7, active=True))

        # 3) Products
        for sku, name, reorder_point, max_stock in (
            ("LAP-001", "Laptop 15in", 5, 100),
            ("MOU-001", "Wireless Mouse", 20, 500),
        ):
            if not db.scalar(select(Product).where(Product.sku == sku)):
                db.add(Product(sku=sku, name=name, reorder_point=reorder_point, max_stock=max_stock, active=True))

        db.commit()
        logger.info("seed ok: warehouse, supplier and demo products present")
    finally:
        db.close()


if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    engine = make_engine(settings)
    try:
        run_seed(make_session_factory(engine))
    finally:
        engine.dispose()
