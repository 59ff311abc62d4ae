import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from redzone.main import app
from redzone.database import Base, get_db
from redzone.models.customer import Customer, CustomerMetrics

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"


@pytest_asyncio.fixture
async def test_engine():
    """Create test database and tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(test_session_maker):
    """Session bound to the test database."""
    async with test_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_db: AsyncSession):
    """Create test client with overridden database."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def at_risk_customer(test_db: AsyncSession) -> Customer:
    """Customer with poor engagement metrics."""
    customer = Customer(
        name="Harbor Coffee Co",
        industry="Food & Beverage",
        status="active",
        mrr=450.0,
        nps_score=3,
        external_data={"subscription": {"plan_amount": 99}, "company": {"loyalty_enabled": False}},
    )
    test_db.add(customer)
    await test_db.flush()
    test_db.add(
        CustomerMetrics(
            customer_id=customer.id,
            days_since_campaign=75,
            nps=3,
            has_qr_loyalty_setup=False,
        )
    )
    await test_db.commit()
    await test_db.refresh(customer)
    return customer


@pytest_asyncio.fixture
async def healthy_customer(test_db: AsyncSession) -> Customer:
    """Customer with good engagement metrics."""
    customer = Customer(
        name="Summit Outfitters",
        industry="Retail",
        status="active",
        mrr=1200.0,
        nps_score=9,
    )
    test_db.add(customer)
    await test_db.flush()
    test_db.add(
        CustomerMetrics(
            customer_id=customer.id,
            days_since_campaign=12,
            nps=9,
            has_qr_loyalty_setup=True,
        )
    )
    await test_db.commit()
    await test_db.refresh(customer)
    return customer
