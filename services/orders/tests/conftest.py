import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from app.core_settings import Settings
from app.domain.models import Order, OrderItem, Product
from app.infrastructure.db import create_db_engine, create_session_factory, init_models
from app.main import create_app

_sku = itertools.count(1)


@pytest.fixture
def settings(tmp_path):
    # SQLite ignores FOR UPDATE / SKIP LOCKED; the transaction logic is the same
    return Settings(DATABASE_URL=f"sqlite:///{tmp_path / 'orders.db'}", RUN_MIGRATIONS=False)


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url)
    init_models(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def make_product(session_factory):
    def _make(inventory: int, name: str = "Widget") -> int:
        with session_factory() as session, session.begin():
            product = Product(sku=f"SKU{next(_sku):04d}", name=name, inventory=inventory)
            session.add(product)
            session.flush()
            return product.id
    return _make


@pytest.fixture
def inventory_of(session_factory):
    def _inventory(product_id: int) -> int:
        with session_factory() as session:
            return session.get(Product, product_id).inventory
    return _inventory


@pytest.fixture
def row_counts(session_factory):
    def _counts():
        with session_factory() as session:
            return (
                session.scalar(select(func.count()).select_from(Order)),
                session.scalar(select(func.count()).select_from(OrderItem)),
            )
    return _counts


@pytest.fixture
def order_status(session_factory):
    def _status(order_id: int) -> str:
        with session_factory() as session:
            return session.get(Order, order_id).status
    return _status


@pytest.fixture
def client(settings, engine):
    with TestClient(create_app(settings)) as client:
        yield client
