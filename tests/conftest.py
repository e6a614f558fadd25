"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PROVIDER"] = "dryrun"
os.environ["CIRCLE_API_KEY"] = ""
os.environ["CIRCLE_ENTITY_SECRET"] = ""
os.environ["DEBUG"] = "false"

from payrail.config import get_settings
from payrail.ledger.database import session_scope
from payrail.ledger.models import Base, LedgerEntryType
from payrail.ledger.repository import LedgerRepository
from payrail.providers.dryrun import DryRunWalletGateway
from payrail.providers.factory import reset_gateway

# 0x-prefixed 20-byte address used as a withdrawal destination
EXTERNAL_ADDRESS = "0x" + "ab" * 20


@pytest.fixture(autouse=True)
def fresh_singletons():
    """Drop cached settings and gateway between tests."""
    get_settings.cache_clear()
    reset_gateway()
    yield
    get_settings.cache_clear()
    reset_gateway()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a file-backed database engine shared by every session in a test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory as the jobs receive it."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def gateway() -> DryRunWalletGateway:
    """In-memory provider."""
    return DryRunWalletGateway()


@pytest.fixture
def in_session(session_factory):
    """Run a coroutine against a repository in its own committed session.

    Usage: ``user = await in_session(lambda repo: repo.create_user(...))``
    """

    async def _run(fn):
        async with session_scope(session_factory) as session:
            return await fn(LedgerRepository(session))

    return _run


async def create_funded_user(
    repo: LedgerRepository,
    email: str,
    available: Decimal = Decimal("0"),
    escrow: Decimal = Decimal("0"),
    wallet_id: str | None = None,
    wallet_address: str | None = None,
):
    """Create a user and record any opening balance through the ledger."""
    user = await repo.create_user(
        email=email,
        wallet_id=wallet_id,
        wallet_address=wallet_address,
        blockchain="BASE" if wallet_id else None,
    )
    if available or escrow:
        await repo.apply_balance_change(
            user.id,
            LedgerEntryType.DEPOSIT,
            available_delta=available + escrow,
            description="Opening balance",
        )
    if escrow:
        await repo.apply_balance_change(
            user.id,
            LedgerEntryType.PAYMENT,
            available_delta=-escrow,
            escrow_delta=escrow,
            description="Escrow for task",
        )
    return user
