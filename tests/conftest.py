# tests/conftest.py
import os
import shutil
import tempfile

# --- Point the app at a throwaway SQLite file and reports dir before it is imported ---
_fd, _DB_PATH = tempfile.mkstemp(suffix=".db")
os.close(_fd)
_REPORTS_DIR = tempfile.mkdtemp(prefix="reports-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["REPORTS_DIR"] = _REPORTS_DIR
os.environ["ETL_SCHEDULER_ENABLED"] = "false"
os.environ["ALERTS_ENABLED"] = "false"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from marketing_data.main import app
from marketing_data.db import engine as app_engine, get_db
from marketing_data.models import Client, Product, Sale, Source, Stock


@pytest.fixture(scope="session", autouse=True)
def _cleanup_files():
    yield
    app_engine.dispose()
    try:
        os.remove(_DB_PATH)
    except Exception:
        pass
    shutil.rmtree(_REPORTS_DIR, ignore_errors=True)


@pytest.fixture(scope="session")
def engine():
    # Tables are created by marketing_data.main at import time.
    return app_engine


@pytest.fixture(scope="session")
def reports_dir():
    return _REPORTS_DIR


# --- Utility: clear tables in FK-safe order ---
def _clear_all(db):
    # child → parent order
    for table in (
        "normalized_data", "raw_data", "ingestion_logs", "sources",
        "sales", "stock", "products", "clients", "reports",
    ):
        db.execute(text(f"DELETE FROM {table}"))
    db.commit()


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    db = TestingSession()
    _clear_all(db)
    try:
        yield db
    finally:
        db.rollback()
        db.close()


# --- Override FastAPI's DB dependency to use our test session ---
@pytest.fixture(autouse=True)
def override_get_db(db_session):
    def _get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def seed_sample(db_session):
    """
    A small CRM dataset: 3 clients, 3 products, 3 sales, 2 stock rows and
    two sources (one declaring JSON, one left to sniffing).
    """
    clients = [
        Client(name="Ana Torres", email="ana@example.com"),
        Client(name="Bruno Diaz", email="bruno@example.com"),
        Client(name="Carla Ruiz", email="carla@example.com"),
    ]
    db_session.add_all(clients)
    db_session.commit()

    products = [
        Product(sku="PROD001", name="Laptop Dell", category="Electronics", supplier="Dell Inc", price=100.5),
        Product(sku="PROD002", name="Mouse Logitech", category="Accessories", supplier="Logitech", price=75.25),
        Product(sku="PROD003", name="Monitor Samsung", category="Electronics", supplier="Samsung", price=200.0),
    ]
    db_session.add_all(products)
    db_session.commit()

    sales = [
        Sale(client_id=clients[0].id, product_id=products[0].id, quantity=5,
             unit_price=100.5, total=502.5, sold_at=datetime(2024, 1, 15, 10, 0)),
        Sale(client_id=clients[1].id, product_id=products[1].id, quantity=3,
             unit_price=75.25, total=225.75, sold_at=datetime(2024, 1, 15, 11, 0)),
        Sale(client_id=clients[0].id, product_id=products[2].id, quantity=1,
             unit_price=200.0, total=200.0, sold_at=datetime(2024, 1, 16, 9, 30)),
    ]
    db_session.add_all(sales)

    stock = [
        Stock(product_id=products[0].id, quantity=12, branch="Centro", location="A1"),
        Stock(product_id=products[1].id, quantity=40, branch="Norte", location="B3"),
    ]
    db_session.add_all(stock)

    sources = [
        Source(name="branch_api", kind="api", format="json", url="https://branch.example.com/sales"),
        Source(name="legacy_export", kind="file", format=None),
    ]
    db_session.add_all(sources)
    db_session.commit()
    return {"clients": clients, "products": products, "sales": sales, "stock": stock, "sources": sources}
