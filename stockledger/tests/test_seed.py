from sqlalchemy import func, select

from stockledger.app.db.models.models_v1 import Product, Supplier, Warehouse
from stockledger.app.db.seed import run_seed


def test_seed_is_idempotent(session_factory):
    run_seed(session_factory)
    run_seed(session_factory)

    db = session_factory()
    try:
        assert db.scalar(select(func.count()).select_from(Warehouse)) == 1
        assert db.scalar(select(func.count()).select_from(Supplier)) == 1
        skus = set(db.scalars(select(Product.sku)))
        assert skus == {"LAP-001", "MOU-001"}
    finally:
        db.close()
