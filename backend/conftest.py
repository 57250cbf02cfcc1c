"""Global test fixtures for CampaignDialer."""

import asyncio
import os
import random
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VAPI_USE_MOCK", "true")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import campaign_dialer.db.models  # noqa: F401  # Ensure models are registered
from campaign_dialer.config import get_settings
from campaign_dialer.db.base import Base
from campaign_dialer.main import create_app
from campaign_dialer.services.csv_parser import ParsedLead
from campaign_dialer.services.dispatcher_mock import MockDispatcher
from campaign_dialer.services.runtime import DialerRuntime, build_runtime

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Tuesday 2026-03-03 10:00 in America/Chicago (CST, UTC-6)
TUESDAY_10AM = datetime(2026, 3, 3, 16, 0, tzinfo=UTC)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime = TUESDAY_10AM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def set(self, now: datetime) -> None:
        self.now = now


class FakeSleep:
    """Records requested delays; each sleep returns only when released."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._gate = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._gate.wait()

    def release(self) -> None:
        gate, self._gate = self._gate, asyncio.Event()
        gate.set()

    async def wait_for_calls(self, count: int, timeout: float = 2.0) -> None:
        async with asyncio.timeout(timeout):
            while len(self.delays) < count:
                await asyncio.sleep(0.01)


def make_lead(phone: str, **kwargs: Any) -> ParsedLead:
    """ParsedLead with sensible defaults for tests."""
    return ParsedLead(
        phone=phone,
        first_name=kwargs.pop("first_name", "Jane"),
        last_name=kwargs.pop("last_name", "Doe"),
        address=kwargs.pop("address", f"{phone[-4:]} Main St"),
        city=kwargs.pop("city", "Austin"),
        zip_code=kwargs.pop("zip_code", "78701"),
        **kwargs,
    )


LEAD_HEADERS = ["First Name", "Last Name", "Address", "City", "Zip Code", "Phone"]


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def dispatcher() -> MockDispatcher:
    return MockDispatcher()


@pytest.fixture
async def runtime(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: MockDispatcher,
    clock: FakeClock,
    fake_sleep: FakeSleep,
) -> AsyncIterator[DialerRuntime]:
    """Dialer runtime on the test database, mock provider and fake time."""
    dialer_runtime = build_runtime(
        get_settings(),
        session_factory,
        dispatcher=dispatcher,
        clock=clock,
        rng=random.Random(7),
        sleep=fake_sleep,
    )
    yield dialer_runtime
    await dialer_runtime.registry.shutdown()


@pytest.fixture
async def client(runtime: DialerRuntime) -> AsyncIterator[AsyncClient]:
    """Create async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=create_app(runtime)),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def auth_headers(client: AsyncClient) -> dict[str, str]:
    """Get auth headers with valid token."""
    response = await client.post(
        "/api/v1/auth/login",
        data={"username": "admin", "password": "admin123"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply test markers based on directory."""
    for item in items:
        path = Path(str(item.fspath))
        parts = path.parts
        if "tests" in parts:
            if "unit" in parts:
                item.add_marker(pytest.mark.unit)
            elif "e2e" in parts:
                item.add_marker(pytest.mark.e2e)
            elif "integration" in parts:
                item.add_marker(pytest.mark.integration)
