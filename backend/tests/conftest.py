"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SNAPSHOT_SCHEDULER_ENABLED", "false")

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cafe_costing.db.base import Base
from cafe_costing.db.session import get_db
from cafe_costing.main import app
# Import all models to ensure they're registered with Base.metadata
from cafe_costing.models import *
from cafe_costing.models.inventory import RawItem, StockMovement
from cafe_costing.models.order import Order
from cafe_costing.models.product import Product, ProductAddon

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

BRANCH = "branch-1"
TENANT = "tenant-1"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


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
    # Disable rate limiters during tests to avoid flaky failures
    from cafe_costing.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def coffee_beans(db_session: Session) -> RawItem:
    """Coffee beans costed per gram."""
    item = RawItem(
        code="BEANS",
        name_ar="حبوب القهوة",
        name_en="Coffee beans",
        unit="g",
        unit_cost=Decimal("0.05"),
        current_stock=Decimal("5000"),
        min_stock_threshold=Decimal("1000"),
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def milk(db_session: Session) -> RawItem:
    """Milk bought and costed per litre."""
    item = RawItem(
        code="MILK",
        name_ar="حليب",
        name_en="Milk",
        unit="l",
        unit_cost=Decimal("6.00"),
        current_stock=Decimal("2"),
        min_stock_threshold=Decimal("5"),
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def espresso(db_session: Session) -> Product:
    product = Product(name_ar="إسبريسو", name_en="Espresso", category="Hot drinks", price=Decimal("15.00"))
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def latte(db_session: Session) -> Product:
    product = Product(name_ar="لاتيه", name_en="Latte", category="Hot drinks", price=Decimal("20.00"))
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def extra_shot(db_session: Session, coffee_beans: RawItem) -> ProductAddon:
    """Paid add-on drawing 9 g of beans per unit."""
    addon = ProductAddon(
        external_id="addon-extra-shot",
        name_ar="شوت إضافي",
        name_en="Extra shot",
        price=Decimal("3.00"),
        raw_item_id=coffee_beans.id,
        quantity_per_unit=Decimal("9"),
    )
    db_session.add(addon)
    db_session.commit()
    db_session.refresh(addon)
    return addon


@pytest.fixture
def caramel_syrup(db_session: Session) -> ProductAddon:
    """Add-on with a price but no ingredient linkage."""
    addon = ProductAddon(external_id="addon-caramel", name_ar="كراميل", price=Decimal("2.00"))
    db_session.add(addon)
    db_session.commit()
    db_session.refresh(addon)
    return addon


@pytest.fixture
def espresso_recipe(db_session: Session, espresso: Product, coffee_beans: RawItem):
    """Active recipe: 18 g of beans (0.90)."""
    from cafe_costing.services.recipe_cost_service import RecipeCostService

    return RecipeCostService(db_session).create_recipe(
        espresso.id,
        "إسبريسو",
        "Espresso",
        [{"raw_item_id": coffee_beans.id, "quantity": 18, "unit": "g"}],
    )


def _make_order(
    db: Session,
    number: str,
    items: list,
    total_amount,
    cost_of_goods=None,
    status: str = "completed",
    created_at: datetime = None,
    branch_id: str = BRANCH,
    payment_method: str = "cash",
) -> Order:
    """Persist an order directly, bypassing costing."""
    order = Order(
        order_number=number,
        tenant_id=TENANT,
        branch_id=branch_id,
        status=status,
        payment_method=payment_method,
        items=items,
        total_amount=Decimal(str(total_amount)),
        cost_of_goods=Decimal(str(cost_of_goods)) if cost_of_goods is not None else None,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def _make_waste(db: Session, raw_item_id: int, quantity, created_at: datetime, notes: str = None) -> StockMovement:
    movement = StockMovement(
        tenant_id=TENANT,
        branch_id=BRANCH,
        raw_item_id=raw_item_id,
        movement_type="waste",
        quantity=Decimal(str(quantity)),
        notes=notes,
        created_at=created_at,
    )
    db.add(movement)
    db.commit()
    db.refresh(movement)
    return movement


@pytest.fixture
def make_order(db_session: Session):
    """Factory: ``make_order(number, items, total_amount, cost_of_goods=None, ...)``."""
    def factory(*args, **kwargs):
        return _make_order(db_session, *args, **kwargs)
    return factory


@pytest.fixture
def make_waste(db_session: Session):
    """Factory: ``make_waste(raw_item_id, quantity, created_at, notes=None)``."""
    def factory(*args, **kwargs):
        return _make_waste(db_session, *args, **kwargs)
    return factory
