"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are cached on first use, so the environment is set before any app import
os.environ.setdefault("SKILLSWAP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SKILLSWAP_AUTO_CREATE_SCHEMA", "true")
os.environ.setdefault("SKILLSWAP_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SKILLSWAP_REDIS_URL", "redis://127.0.0.1:6399/0")
os.environ.setdefault("SKILLSWAP_JWT_SECRET", "test-secret-key-with-at-least-32-bytes!")
os.environ.setdefault("SKILLSWAP_LOG_FORMAT", "console")
os.environ.setdefault("SKILLSWAP_LEDGER_RETRY_BACKOFF_SECONDS", "0")

from collections.abc import AsyncGenerator, Callable  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from skillswap.auth.jwt import Identity, create_access_token  # noqa: E402
from skillswap.config import get_settings  # noqa: E402
from skillswap.credits.ledger import CreditLedger  # noqa: E402
from skillswap.database import close_db, create_schema, get_session_factory, init_db  # noqa: E402
from skillswap.main import create_app  # noqa: E402

ALICE = Identity(user_id=1, email="alice@example.com", first_name="Alice", last_name="Ng")
BOB = Identity(user_id=2, email="bob@example.com", first_name="Bob", last_name="Ruiz")
CAROL = Identity(user_id=3, email="carol@example.com", first_name="Carol", last_name="Diaz")


class FakeClock:
    """Settable UTC clock for services that take ``clock=``."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_token(identity: Identity) -> str:
    return create_access_token(identity)


def auth_headers(identity: Identity) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(identity)}"}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> CreditLedger:
    return CreditLedger(store_timeout=2.0)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session on a fresh in-memory database with the schema created."""
    await init_db("sqlite+aiosqlite:///:memory:")
    await create_schema()
    async with get_session_factory()() as session:
        yield session
    await close_db()


@pytest_asyncio.fixture
async def file_db(tmp_path) -> AsyncGenerator[Callable[[], AsyncSession], None]:  # noqa: ANN001
    """File-backed database for tests that need several independent sessions."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'skillswap.db'}")
    await create_schema()
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def app():  # noqa: ANN201
    """Application with its lifespan running (database, hub, ledger, bookings)."""
    get_settings.cache_clear()
    application = create_app()
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:  # noqa: ANN001
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def fund(identity: Identity, amount: int, ledger: CreditLedger | None = None) -> None:
    """Grant ``amount`` credits to a user on the currently initialized database."""
    ledger = ledger or CreditLedger()
    async with get_session_factory()() as db:
        async with ledger.transaction(db, identity.user_id):
            await ledger.grant(db, identity.user_id, amount, description="test funding")
