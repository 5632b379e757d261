"""
Pytest configuration and fixtures for the call engine tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import jwt
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from machinealert.calls.lifecycle import CallLifecycleEngine
from machinealert.calls.models import Call, CallMachine, CallStatus, CallType
from machinealert.calls.query import CallQueryService
from machinealert.config import Settings
from machinealert.machines.models import Category, Factory, Machine, MachineStatus
from machinealert.shared.database import Base

TEST_JWT_SECRET = "test-secret-key-for-testing-only-0123456789"


class MutableClock:
    """Clock callable whose time only moves when a test says so."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a file SQLite database."""
    return Settings(
        app_env="qa",
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'calls.db'}",
        jwt_secret_key=TEST_JWT_SECRET,
        scheduler_enabled=False,
        sweep_max_concurrency=4,
        sweep_call_timeout_seconds=5.0,
        read_retry_attempts=3,
        read_retry_base_delay_seconds=0.0,
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2025, 3, 10, 8, 0, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with all tables."""
    engine = create_async_engine(test_settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def lifecycle_engine(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    clock: MutableClock,
) -> CallLifecycleEngine:
    return CallLifecycleEngine(session_factory, settings=test_settings, clock=clock)


@pytest.fixture
def query_service(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    clock: MutableClock,
) -> CallQueryService:
    return CallQueryService(session_factory, settings=test_settings, clock=clock)


@pytest_asyncio.fixture
async def plant(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, Any]:
    """Seed one category with two factories and three machines."""
    category = Category(id=uuid4(), name="Inyección")
    other_category = Category(id=uuid4(), name="Ensamble")
    factory = Factory(id=uuid4(), name="Planta Norte", category_id=category.id)
    other_factory = Factory(id=uuid4(), name="Planta Sur", category_id=other_category.id)
    press = Machine(
        id=uuid4(),
        name="INY-01",
        status=MachineStatus.ACTIVE,
        duration=45,
        factory_id=factory.id,
    )
    lathe = Machine(
        id=uuid4(),
        name="INY-02",
        status=MachineStatus.ACTIVE,
        duration=90,
        factory_id=factory.id,
    )
    welder = Machine(
        id=uuid4(),
        name="ENS-01",
        status=MachineStatus.MAINTENANCE,
        duration=60,
        factory_id=other_factory.id,
    )

    async with session_factory() as session, session.begin():
        session.add_all([category, other_category])
        await session.flush()
        session.add_all([factory, other_factory])
        await session.flush()
        session.add_all([press, lathe, welder])

    return {
        "category": category,
        "other_category": other_category,
        "factory": factory,
        "other_factory": other_factory,
        "press": press,
        "lathe": lathe,
        "welder": welder,
    }


async def _seed_call(
    session_factory: async_sessionmaker[AsyncSession],
    machine_id: UUID,
    call_time: datetime,
    *,
    duration: int = 90,
    status: CallStatus = CallStatus.PENDIENTE,
    call_type: CallType = CallType.NORMAL,
    completion_time: datetime | None = None,
) -> Call:
    """Insert a call directly, bypassing the engine."""
    call = Call(
        id=uuid4(),
        call_time=call_time,
        call_date=call_time.date(),
        duration=duration,
        call_type=call_type,
        status=status,
        completion_time=completion_time,
        created_by_role="PRODUCCION",
        machine_links=[CallMachine(machine_id=machine_id)],
    )
    async with session_factory() as session, session.begin():
        session.add(call)
    return call


async def _load_call(
    session_factory: async_sessionmaker[AsyncSession],
    call_id: UUID,
) -> Call | None:
    async with session_factory() as session:
        return await session.get(Call, call_id)


def make_token(sub: str = "user-1", roles: list[str] | None = None, **extra: Any) -> str:
    payload: dict[str, Any] = {
        "sub": sub,
        "roles": roles if roles is not None else ["LOGISTICA"],
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(extra)
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def insert_call(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[Call]]:
    """Insert a call row; keyword arguments as for ``_seed_call``."""

    async def _insert(machine_id: UUID, call_time: datetime, **kwargs: Any) -> Call:
        return await _seed_call(session_factory, machine_id, call_time, **kwargs)

    return _insert


@pytest.fixture
def fetch_call(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[UUID], Awaitable[Call | None]]:
    async def _fetch(call_id: UUID) -> Call | None:
        return await _load_call(session_factory, call_id)

    return _fetch


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build an Authorization header for the given role claims."""

    def _headers(*roles: str, sub: str = "user-1") -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(sub=sub, roles=list(roles))}"}

    return _headers
