"""Pytest configuration and fixtures."""

import os

# Keep the application engine off the filesystem; tests bind their own engine below.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from typing import Callable, Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from atelier.core.rate_limit import limiter
from atelier.db.base import Base
from atelier.db.session import get_db
from atelier.main import app
# Import all models to ensure they're registered with Base.metadata
from atelier.models import *  # noqa: F401,F403
from atelier.models.material import Material, QuantityType
from atelier.models.product import ReadyProduct, SubcontractClient, SubcontractProduct
from atelier.services.configuration_source import configuration_source_for
from atelier.services.stock_ledger_service import StockLedgerService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


def _drop_tables(engine) -> None:
    # DROP TABLE deletes rows first; reversal rows reference their original
    # with ON DELETE RESTRICT, so enforcement is off for teardown.
    with engine.connect() as connection:
        connection.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=connection)
        connection.commit()
        connection.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture
def drop_tables() -> Callable:
    """Teardown used by db_engine, for tests that drop the schema themselves."""
    return _drop_tables


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    _drop_tables(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def meters(db_session: Session) -> QuantityType:
    """Unit of measure for fabrics."""
    unit = QuantityType(name="Metre", unit="m")
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture
def make_material(db_session: Session, meters: QuantityType) -> Callable[..., Material]:
    """Factory creating a material with an opening stock."""
    def _make(name: str, stock: float = 100.0, unit_price: float = 2.0, color: str = None) -> Material:
        material = StockLedgerService(db_session).create_material(
            name=name,
            color=color,
            unit_price=unit_price,
            stock_quantity=stock,
            quantity_type_id=meters.id,
        )
        db_session.commit()
        return material

    return _make


@pytest.fixture
def make_product(db_session: Session) -> Callable[..., ReadyProduct]:
    """Factory creating a regular product with its material configuration.

    ``rows`` is a list of (material, quantity_per_piece, size) tuples.
    """
    def _make(name: str, rows, boutique_origin: str = "Tunis") -> ReadyProduct:
        product = ReadyProduct(name=name, reference=name.upper(), boutique_origin=boutique_origin)
        db_session.add(product)
        db_session.flush()
        if rows:
            configuration_source_for(db_session, "regular").replace_requirements(
                product,
                [
                    {"material_id": m.id, "quantity_needed": q, "size_specific": size}
                    for m, q, size in rows
                ],
            )
        db_session.commit()
        return product

    return _make


@pytest.fixture
def production_setup(db_session: Session, make_material, make_product):
    """Product P: 3 units of fabric M per piece, any size, 100 in stock."""
    fabric = make_material("Crepe", stock=100.0, unit_price=2.5, color="noir")
    product = make_product("Robe Lina", [(fabric, 3.0, None)])
    return {
        "db": db_session,
        "fabric": fabric,
        "product": product,
    }


@pytest.fixture
def subcontract_setup(db_session: Session, make_material):
    """Sub-contracted product using 2 units of lining per piece."""
    lining = make_material("Doublure", stock=50.0, unit_price=1.0)
    customer = SubcontractClient(name="Maison Amel")
    db_session.add(customer)
    db_session.flush()
    product = SubcontractProduct(client_id=customer.id, name="Veste ST", reference="VST")
    db_session.add(product)
    db_session.flush()
    configuration_source_for(db_session, "soustraitance").replace_requirements(
        product, [{"material_id": lining.id, "quantity_needed": 2.0}]
    )
    db_session.commit()
    return {
        "db": db_session,
        "lining": lining,
        "client": customer,
        "product": product,
    }
