import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from stockledger.app.core.config import Settings
from stockledger.app.db.base import Base
from stockledger.app.db.models import models_v1  # noqa: F401  (register tables)
from stockledger.app.db.models.models_v1 import Product, Supplier, Warehouse
from stockledger.app.db.session import make_engine, make_session_factory
from stockledger.app.main import create_app
from stockledger.services.inventory import InventoryLedger
from stockledger.services.locks import KeyedLock
from stockledger.services.procurement import OrderItemInput, ProcurementService

_seq = itertools.count(1)


def _settings(tmp_path, name: str) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / name}",
        LOG_LEVEL="WARNING",
        LOCK_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture(scope="function")
def session_factory(tmp_path):
    """
    Fresh SQLite file per test.

    A file rather than :memory: so that worker threads in the concurrency tests
    each get their own connection to the same database.
    """
    engine = make_engine(_settings(tmp_path, "ledger.db"))
    Base.metadata.create_all(bind=engine)
    try:
        yield make_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def inventory(db_session, locks) -> InventoryLedger:
    return InventoryLedger(db_session, locks, lock_timeout=5.0)


@pytest.fixture
def procurement(db_session, locks) -> ProcurementService:
    return ProcurementService(db_session, locks, lock_timeout=5.0)


# ---------- master data factories ----------
@pytest.fixture
def make_product(db_session):
    def _make(reorder_point: int | None = 10, max_stock: int | None = 100, name: str | None = None) -> Product:
        n = next(_seq)
        p = Product(
            sku=f"TEST-SKU-{n}",
            name=name or f"Test product {n}",
            reorder_point=reorder_point,
            max_stock=max_stock,
            active=True,
        )
        db_session.add(p)
        db_session.commit()
        return p

    return _make


@pytest.fixture
def make_warehouse(db_session):
    def _make() -> Warehouse:
        n = next(_seq)
        w = Warehouse(name=f"TEST-WH-{n}", capacity=1000, active=True)
        db_session.add(w)
        db_session.commit()
        return w

    return _make


@pytest.fixture
def make_supplier(db_session):
    def _make() -> Supplier:
        n = next(_seq)
        s = Supplier(name=f"TEST-SUP-{n}", lead_time_days=7, active=True)
        db_session.add(s)
        db_session.commit()
        return s

    return _make


@pytest.fixture
def product(make_product) -> Product:
    return make_product()


@pytest.fixture
def warehouse(make_warehouse) -> Warehouse:
    return make_warehouse()


@pytest.fixture
def supplier(make_supplier) -> Supplier:
    return make_supplier()


@pytest.fixture
def item():
    def _item(product_id: int, quantity: int, unit_price: str) -> OrderItemInput:
        return OrderItemInput(product_id=product_id, quantity=quantity, unit_price=Decimal(unit_price))

    return _item


# ---------- HTTP ----------
@pytest.fixture
def api_settings(tmp_path) -> Settings:
    return _settings(tmp_path, "api.db")


@pytest.fixture
def api_db(api_settings) -> Session:
    """Session on the API's database, for arranging master data."""
    engine = make_engine(api_settings)
    Base.metadata.create_all(bind=engine)
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def api(api_settings, api_db):
    app = create_app(api_settings)
    with TestClient(app) as client:
        yield client
