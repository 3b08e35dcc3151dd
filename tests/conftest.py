"""
Test Suite Configuration
"""
import pytest
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.analytics.aggregator import MetricsAggregator
from src.bulk.executor import BulkExecutor
from src.config.settings import BulkSettings, Settings
from src.database.connection import build_session_factory
from src.database.models import Base
from src.domain.models import OrderStatus, PaymentStatus
from src.gateway.fallback import RecordStoreGateway
from src.gateway.sql_source import SqlRecordSource

from tests.factories import (
    InMemoryAuditSink,
    InMemoryRecordSource,
    fixed_clock,
    make_customer,
    make_order,
    make_product,
)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for the testing environment"""
    return Settings(APP_ENV="testing", bulk=BulkSettings(max_workers=4, max_batch_size=50))


@pytest.fixture
def seeded_source() -> InMemoryRecordSource:
    """Primary source with a small, known data set"""
    return InMemoryRecordSource(
        name="primary",
        orders=[
            make_order("O1", "C1", 1000.0, days_ago=1),
            make_order("O2", "C1", 500.0, days_ago=3, status=OrderStatus.PROCESSING),
            make_order(
                "O3", "C2", 2000.0, days_ago=2,
                status=OrderStatus.PENDING, payment_status=PaymentStatus.PENDING,
            ),
            make_order("O4", "C2", 800.0, days_ago=40),
        ],
        customers=[
            make_customer("C1", registered_days_ago=10),
            make_customer("C2", registered_days_ago=45),
        ],
        products=[make_product("SKU-1"), make_product("SKU-2", category="books")],
    )


@pytest.fixture
def gateway(seeded_source) -> RecordStoreGateway:
    return RecordStoreGateway(seeded_source, primary_timeout=1.0, secondary_timeout=1.0)


@pytest.fixture
def aggregator(gateway) -> MetricsAggregator:
    return MetricsAggregator(gateway, clock=fixed_clock)


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def executor(gateway, audit_sink) -> BulkExecutor:
    return BulkExecutor(gateway, audit_sink, max_workers=4, max_batch_size=50)


@pytest.fixture
async def sqlite_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a fresh SQLite file database"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'backoffice.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def sql_source(sqlite_factory) -> SqlRecordSource:
    return SqlRecordSource(sqlite_factory)
