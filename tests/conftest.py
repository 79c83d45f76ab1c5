"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (ledger, employees, rollover, API).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_ledger.auth.service import create_access_token as _sign_token
from leave_ledger.common.constants import Rank, UserRole
from leave_ledger.common.events import notifier
from leave_ledger.database import Base, commit_and_publish, get_db, get_session_factory
from leave_ledger.employees.models import Employee
from leave_ledger.main import create_app
from leave_ledger.rollover.models import LeaveYearSettings

# Import ALL model modules so every table lands on Base.metadata
import leave_ledger.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite; enforce ON DELETE CASCADE
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function and turn on foreign keys."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_ledger.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _reset_on_leave_cache():
    """Each test starts from an empty database, so cached id sets are stale."""
    from leave_ledger.ledger.status import on_leave_cache

    on_leave_cache.invalidate()
    yield
    on_leave_cache.invalidate()


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await commit_and_publish(session)
        except Exception:
            await session.rollback()
            notifier.discard_pending(session)
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    name: str = "Budi Santoso",
    rank: Rank = Rank.jft,
    prior_year_balance: int = 0,
    current_year_balance: int = 12,
    two_years_ago_balance: int = 0,
    next_year_backup_balance: Optional[int] = None,
    leave_year: int = 2025,
    employee_number: Optional[str] = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        employee_number=employee_number or f"19{uuid.uuid4().int % 10**16:016d}",
        name=name,
        rank=rank,
        department="Seksi Lalu Lintas",
        prior_year_balance=prior_year_balance,
        current_year_balance=current_year_balance,
        two_years_ago_balance=two_years_ago_balance,
        next_year_backup_balance=next_year_backup_balance,
        leave_year=leave_year,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def _insert_employee(db: AsyncSession, **kwargs) -> Employee:
    employee = Employee(**_make_employee(**kwargs))
    db.add(employee)
    await db.flush()
    return employee


async def _insert_year_settings(
    db: AsyncSession,
    *,
    current_year: int = 2025,
    previous_year: Optional[int] = None,
) -> LeaveYearSettings:
    row = LeaveYearSettings(id=1, current_year=current_year, previous_year=previous_year)
    db.add(row)
    await db.flush()
    return row


@pytest.fixture
async def year_settings(db) -> LeaveYearSettings:
    """Leave year 2025 with no revert path."""
    row = await _insert_year_settings(db)
    await db.commit()
    return row


@pytest.fixture
async def employee(db, year_settings) -> Employee:
    """A JFT employee holding 4 prior-year + 12 current-year days."""
    emp = await _insert_employee(db, prior_year_balance=4, current_year_balance=12)
    await db.commit()
    return emp


# ── Auth helpers ────────────────────────────────────────────────────

ADMIN_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")
VIEWER_ID = uuid.UUID("00000000-0000-4000-8000-000000000002")


def create_access_token(
    admin_id: uuid.UUID = ADMIN_ID,
    role: UserRole = UserRole.admin,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    expires_in = timedelta(hours=-1) if expired else None
    return _sign_token(admin_id, role=role, expires_in=expires_in)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token()}"}


@pytest.fixture
def viewer_headers() -> dict[str, str]:
    token = create_access_token(VIEWER_ID, role=UserRole.viewer)
    return {"Authorization": f"Bearer {token}"}
