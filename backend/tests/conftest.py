"""
Test Configuration — Fixtures for async DB, test client, and seed data.

Each test gets its own SQLite database file so requests can run on their own
sessions exactly as in production (one AsyncSession per request) and every
commit/rollback is real.
"""

import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_current_user, get_db, get_notifier, get_payment_provider
from api.main import app
from db.models import Order, Product, ProductVariant
from db.session import Base
from integrations.payments import MockPaymentProvider

PRODUCT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
INACTIVE_PRODUCT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a2")
WEBHOOK_SECRET = "whsec_test"


def _enable_sqlite_transactions(engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest properly; WAL so readers don't block writers."""

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


class RecordingNotifier:
    """Notification fake that records every call."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.confirmations = []
        self.shipping_updates = []
        self.inventory_alerts = []

    async def send_order_confirmation(self, order) -> bool:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.confirmations.append(order.order_number)
        return True

    async def send_shipping_update(self, order, status: str) -> bool:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.shipping_updates.append((order.order_number, status))
        return True

    async def send_inventory_alert(self, product_title, variant_sku, alert_type, stock) -> bool:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.inventory_alerts.append((product_title, variant_sku, alert_type, stock))
        return True


@pytest.fixture
async def test_engine(tmp_path):
    """Fresh database file per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}", echo=False)
    _enable_sqlite_transactions(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def payments():
    return MockPaymentProvider(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
async def seeded_product(session_factory):
    """Viral Hoodie at 20.00: RED-M (stock 5) and BLU-L (stock 40, +2.50), plus an inactive product."""
    async with session_factory() as db:
        db.add(
            Product(
                product_id=PRODUCT_ID,
                title="Viral Hoodie",
                slug="viral-hoodie",
                price=Decimal("20.00"),
                images=["https://cdn.example.com/hoodie.jpg"],
                variants=[
                    ProductVariant(sku="RED-M", color="Red", size="M", stock=5),
                    ProductVariant(sku="BLU-L", color="Blue", size="L", stock=40, price_modifier=Decimal("2.50")),
                ],
            )
        )
        db.add(
            Product(
                product_id=INACTIVE_PRODUCT_ID,
                title="Retired Mug",
                slug="retired-mug",
                price=Decimal("12.00"),
                is_active=False,
                variants=[ProductVariant(sku="MUG", stock=100)],
            )
        )
        await db.commit()
    return {"product_id": PRODUCT_ID, "inactive_product_id": INACTIVE_PRODUCT_ID}


@pytest.fixture
def read_stock(session_factory):
    """Read a variant's committed stock on a fresh session."""

    async def _read(sku: str, product_id: uuid.UUID = PRODUCT_ID) -> int:
        async with session_factory() as db:
            result = await db.execute(
                select(ProductVariant.stock).where(ProductVariant.product_id == product_id, ProductVariant.sku == sku)
            )
            return result.scalar_one()

    return _read


@pytest.fixture
def count_orders(session_factory):
    async def _count() -> int:
        async with session_factory() as db:
            result = await db.execute(select(func.count(Order.order_id)))
            return result.scalar_one()

    return _count


@pytest.fixture
def checkout_payload():
    """Build a checkout body; items are (sku, quantity) pairs on the seeded product."""

    def _payload(*items, email: str = "ada@example.com") -> dict:
        return {
            "items": [{"product_id": str(PRODUCT_ID), "variant_sku": sku, "quantity": qty} for sku, qty in items],
            "email": email,
            "name": "Ada Lovelace",
            "shipping_address": {
                "line1": "12 Analytical Way",
                "city": "London",
                "state": "LN",
                "zip": "10001",
            },
        }

    return _payload


@pytest.fixture
def admin_user():
    return {"sub": "admin-1", "email": "ops@storefront.local", "roles": ["admin"]}


@pytest.fixture
def current_user(admin_user):
    """User returned by get_current_user. Override in a test module to change roles."""
    return admin_user


@pytest.fixture
async def client(session_factory, current_user, notifier, payments):
    """Async test client; every request gets its own session on the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_provider] = lambda: payments

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
