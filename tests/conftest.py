"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async SQLite with SAVEPOINT support)
- A recording realtime hub
- Fake chain reader, payment link client and settlement relay
- An HTTP client with every external dependency overridden
"""
import pytest
from typing import AsyncGenerator
from unittest.mock import patch

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from bitpay_ingest.core.config import settings
from bitpay_ingest.db.database import Base, get_db
from bitpay_ingest.domain.services.chain_reader import get_chain_reader
from bitpay_ingest.domain.services.payment_links import (
    PaymentLink,
    PaymentLinkClient,
    get_payment_link_client,
)
from bitpay_ingest.domain.services.realtime import RealtimeHub, get_realtime_hub
from bitpay_ingest.domain.services.settlement import SettlementRelay, get_settlement_relay
from bitpay_ingest.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite://"

TEST_CHAINHOOK_TOKEN = "test-chainhook-token"
TEST_STACKSPAY_SECRET = "test-stackspay-secret"
DEPLOYER = "ST2F3J1PK46D6XVRBB9SQ66PY89P8G0EBDW5E05M7"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fakes for external collaborators
# ============================================================================

class RecordingHub(RealtimeHub):
    """Realtime hub that records every emit instead of needing sockets"""

    def __init__(self) -> None:
        super().__init__()
        self.emitted: list[tuple[str, str, dict]] = []

    async def emit(self, room: str, event: str, data: dict) -> int:
        self.emitted.append((room, event, data))
        return await super().emit(room, event, data)

    def events(self, room: str | None = None) -> list[str]:
        return [e for r, e, _ in self.emitted if room is None or r == room]


class FakeChainReader:
    """Stand-in for ChainReader with a fixed admin set and threshold"""

    def __init__(self, admins: list[str] | None = None, threshold: int = 3) -> None:
        self.admins = admins if admins is not None else ["SP_ADMIN_1", "SP_ADMIN_2", "SP_ADMIN_3"]
        self.threshold = threshold
        self.admin_calls = 0
        self.threshold_calls = 0
        self.error: Exception | None = None

    async def get_treasury_admins(self) -> list[str]:
        self.admin_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.admins)

    async def get_approval_threshold(self) -> int:
        self.threshold_calls += 1
        if self.error is not None:
            raise self.error
        return self.threshold


class FakePaymentLinks(PaymentLinkClient):
    """Payment link client that never leaves the process"""

    def __init__(self, enabled: bool = False, error: Exception | None = None) -> None:
        super().__init__(api_url="https://pay.test" if enabled else "", api_key="key")
        self.error = error
        self.calls: list[dict] = []

    async def create_payment_link(self, **kwargs) -> PaymentLink:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return PaymentLink(
            gateway_payment_id=f"sp_{kwargs['payment_id']}",
            payment_url=f"https://pay.test/checkout/{kwargs['payment_id']}",
        )


class FakeSettlementRelay(SettlementRelay):
    """Settlement relay returning a fixed txid, or raising"""

    def __init__(self, txid: str = "0xsettled", error: Exception | None = None) -> None:
        super().__init__(relay_url="https://relay.test", relay_token="token")
        self.txid = txid
        self.error = error
        self.calls: list[tuple[int, str]] = []

    async def complete_purchase(self, stream_id: int, buyer: str) -> str:
        self.calls.append((stream_id, buyer))
        if self.error is not None:
            raise self.error
        return self.txid


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def chain_reader() -> FakeChainReader:
    return FakeChainReader()


@pytest.fixture
def payment_links() -> FakePaymentLinks:
    return FakePaymentLinks()


@pytest.fixture
def settlement_relay() -> FakeSettlementRelay:
    return FakeSettlementRelay()


@pytest.fixture(scope="function")
async def test_client(db_session, hub, chain_reader, payment_links, settlement_relay):
    """Create test client with database and external services overridden"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_realtime_hub] = lambda: hub
    app.dependency_overrides[get_chain_reader] = lambda: chain_reader
    app.dependency_overrides[get_payment_link_client] = lambda: payment_links
    app.dependency_overrides[get_settlement_relay] = lambda: settlement_relay

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_CHAINHOOK_TOKEN}"}


# ============================================================================
# Global state reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from bitpay_ingest.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    from bitpay_ingest.core.rate_limit import webhook_rate_limiter
    webhook_rate_limiter.reset()
    yield
    webhook_rate_limiter.reset()


@pytest.fixture(autouse=True)
def webhook_secrets():
    """Known secrets for the chainhook gate and StacksPay signatures"""
    with patch.object(settings, "CHAINHOOK_SECRET_TOKEN", TEST_CHAINHOOK_TOKEN), \
         patch.object(settings, "STACKSPAY_WEBHOOK_SECRET", TEST_STACKSPAY_SECRET), \
         patch.object(settings, "BITPAY_DEPLOYER_ADDRESS", DEPLOYER):
        yield


class FakeRedis:
    """In-memory Redis stand-in with the commands the service uses."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replaces get_redis with FakeRedis for every test."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("bitpay_ingest.domain.services.admin_directory.get_redis", _get_fake_redis), \
         patch("bitpay_ingest.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Pipeline runner
# ============================================================================

@pytest.fixture
def run_batch(db_session, hub, chain_reader, payment_links):
    """Run one delivery document through a domain's pipeline, bypassing HTTP."""
    from bitpay_ingest.ingest.payload import ChainhookBatch
    from bitpay_ingest.ingest.registry import build_pipeline

    async def _run(slug: str, document: dict):
        pipeline = build_pipeline(
            slug, db_session, hub,
            chain_reader=chain_reader,
            payment_links=payment_links,
        )
        return await pipeline.run(ChainhookBatch.model_validate(document))

    return _run
