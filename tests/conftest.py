import os

# Configure the app for an in-memory database before anything imports settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DEBUG", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from mdrrmo_api.main import app
from mdrrmo_api.config import settings
from mdrrmo_api.database import Base, get_db
from mdrrmo_api.api.deps import get_password_hash
from mdrrmo_api.models.category import Category, CategoryType
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.user import User
from mdrrmo_api.security import rate_limiter
from mdrrmo_api.security.rate_limiter import LoginRateLimiter
from mdrrmo_api.services.cache_service import CacheService, get_cache_service
from mdrrmo_api.services.stock_ledger import compute_expected_stock

# Test database URL (in-memory SQLite shared through a single connection)
TEST_DATABASE_URL = "sqlite+aiosqlite://"

ADMIN_PASSWORD = "adminpassword123"
STAFF_PASSWORD = "staffpassword123"


def _enable_savepoints(engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs work, and enforce foreign keys."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def test_db():
    """Create test database and tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    _enable_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_login_limiter(monkeypatch):
    """The login limiter is process-wide; give every test a fresh in-memory one."""
    monkeypatch.setattr(rate_limiter, "_login_rate_limiter", LoginRateLimiter(
        max_attempts=settings.LOGIN_MAX_ATTEMPTS,
        window_seconds=settings.LOGIN_WINDOW_SECONDS,
    ))


@pytest_asyncio.fixture
async def admin_user(test_db: AsyncSession):
    """Create an admin user."""
    user = User(
        email="admin@mdrrmo.example.com",
        hashed_password=get_password_hash(ADMIN_PASSWORD),
        first_name="Admin",
        last_name="Officer",
        is_active=True,
        is_admin=True,
    )
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


@pytest_asyncio.fixture
async def staff_user(test_db: AsyncSession):
    """Create a non-admin staff user."""
    user = User(
        email="staff@mdrrmo.example.com",
        hashed_password=get_password_hash(STAFF_PASSWORD),
        first_name="Field",
        last_name="Responder",
        is_active=True,
        is_admin=False,
    )
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


@pytest_asyncio.fixture
async def equipment_category(test_db: AsyncSession):
    category = Category(name="Rescue Equipment", type=CategoryType.EQUIPMENT)
    test_db.add(category)
    await test_db.commit()
    await test_db.refresh(category)
    return category


@pytest_asyncio.fixture
async def relief_category(test_db: AsyncSession):
    category = Category(name="Relief Goods", type=CategoryType.RELIEF_GOODS)
    test_db.add(category)
    await test_db.commit()
    await test_db.refresh(category)
    return category


@pytest_asyncio.fixture
async def radio_item(test_db: AsyncSession, equipment_category: Category):
    """A returnable item: received batches mint serialized units."""
    item = InventoryItem(
        name="Handheld Radio",
        category_id=equipment_category.id,
        quantity_in_stock=0,
        min_stock_level=0,
        unit_of_measure="unit",
        location="Main Warehouse",
    )
    test_db.add(item)
    await test_db.commit()
    await test_db.refresh(item)
    return item


@pytest_asyncio.fixture
async def rice_item(test_db: AsyncSession, relief_category: Category):
    """A consumable item: received batches only bump the counter."""
    item = InventoryItem(
        name="Rice Sack",
        category_id=relief_category.id,
        quantity_in_stock=0,
        min_stock_level=0,
        unit_of_measure="sack",
        location="Main Warehouse",
    )
    test_db.add(item)
    await test_db.commit()
    await test_db.refresh(item)
    return item


@pytest.fixture
def assert_stock_identity(test_db: AsyncSession):
    """Check that stored stock equals the stock implied by its history."""

    async def check(item_id: int) -> dict:
        report = await compute_expected_stock(test_db, item_id)
        assert report["consistent"], report
        return report

    return check


@pytest_asyncio.fixture
async def client(test_db: AsyncSession):
    """Create test client with overridden database and a disabled cache."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_service] = lambda: CacheService()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _login(client: AsyncClient, email: str, password: str) -> str:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["access_token"]


@pytest_asyncio.fixture
async def authenticated_client(client: AsyncClient, admin_user: User):
    """Create a client authenticated as an admin."""
    token = await _login(client, admin_user.email, ADMIN_PASSWORD)
    client.headers["Authorization"] = f"Bearer {token}"
    # Bearer wins over the session cookie; drop the cookie so role tests are unambiguous
    client.cookies.clear()
    return client


@pytest_asyncio.fixture
async def staff_client(client: AsyncClient, staff_user: User):
    """Create a client authenticated as a non-admin staff member."""
    token = await _login(client, staff_user.email, STAFF_PASSWORD)
    client.headers["Authorization"] = f"Bearer {token}"
    client.cookies.clear()
    return client
