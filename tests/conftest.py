import asyncio
import os
import uuid
from datetime import datetime
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

# Required settings must exist before the application is imported
os.environ.setdefault("API_AUTH_TOKEN", "test_api_key")
os.environ.setdefault(
    "TON_OPERATOR_MNEMONIC", " ".join(["abandon"] * 23 + ["art"])
)
os.environ.setdefault("JETTON_MASTER_ADDRESS", "0:" + "11" * 32)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from pytoniq_core import Address  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from corgi_rewards.blockchain.models import (  # noqa: E402
    CorgiSighting,
    OperatorLedger,
    Transaction,
    query_id_for,
)
from corgi_rewards.blockchain.schemas import (  # noqa: E402
    AffordabilityResult,
    BroadcastResult,
    JettonTransferParams,
    SequenceCheck,
)
from corgi_rewards.config import settings  # noqa: E402
from corgi_rewards.constants import (  # noqa: E402
    RewardStatus,
    SightingStatus,
    TransactionStatus,
)
from corgi_rewards.main import app  # noqa: E402
from corgi_rewards.utils import utcnow  # noqa: E402


OPERATOR_RAW = "0:" + "aa" * 32
OPERATOR_JETTON_WALLET_RAW = "0:" + "bb" * 32
RECIPIENT_RAW = "0:" + "cc" * 32

OPERATOR_ADDRESS = Address(OPERATOR_RAW).to_str()
RECIPIENT_ADDRESS = Address(RECIPIENT_RAW).to_str()

COIN = 10**9


@pytest.fixture
async def test_engine(tmp_path):
    """Create a test database engine backed by a temporary file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# Fixture functions that create database model instances
@pytest.fixture
def create_ledger(session_factory):
    """Create the operator ledger."""

    async def _create_ledger(
        current_balance=100 * COIN,
        total_distributed=0,
        wallet_address=OPERATOR_ADDRESS,
    ):
        async with session_factory() as session:
            ledger = OperatorLedger(
                id=1,
                wallet_address=wallet_address,
                current_balance=current_balance,
                total_distributed=total_distributed,
            )
            session.add(ledger)
            await session.commit()
            return ledger

    return _create_ledger


@pytest.fixture
def create_sighting(session_factory):
    """Create a CorgiSighting instance."""

    async def _create_sighting(
        corgi_count=3,
        status=SightingStatus.PENDING,
        reward_status=RewardStatus.PENDING,
    ):
        async with session_factory() as session:
            sighting = CorgiSighting(
                reporter_id=1,
                buddy_id=2,
                corgi_count=corgi_count,
                status=status,
                reward_status=reward_status,
            )
            session.add(sighting)
            await session.commit()
            await session.refresh(sighting)
            return sighting

    return _create_sighting


@pytest.fixture
def create_transaction(session_factory):
    """Create a Transaction instance."""

    async def _create_transaction(
        amount=3 * COIN,
        status=TransactionStatus.BROADCASTING,
        transaction_hash: Optional[str] = "pending-1700000000000-7",
        sighting_id: Optional[int] = None,
        broadcast_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ):
        transaction_id = uuid.uuid4()
        async with session_factory() as session:
            transaction = Transaction(
                id=transaction_id,
                query_id=query_id_for(transaction_id),
                transaction_hash=transaction_hash,
                from_wallet=OPERATOR_ADDRESS,
                to_wallet=RECIPIENT_ADDRESS,
                amount=amount,
                related_entity_id=(
                    str(sighting_id) if sighting_id is not None else None
                ),
                related_entity_type=(
                    "corgi_sighting" if sighting_id is not None else None
                ),
                status=status,
                sequence_number=7,
                broadcast_at=(
                    broadcast_at
                    if status == TransactionStatus.PENDING
                    else broadcast_at or utcnow()
                ),
                created_at=created_at or utcnow(),
            )
            session.add(transaction)
            await session.commit()
            return transaction

    return _create_transaction


@pytest.fixture
def fetch(session_factory):
    """Read a row back in a fresh session."""

    async def _fetch(model, key):
        async with session_factory() as session:
            return await session.get(model, key)

    return _fetch


# Mocks for pipeline components
@pytest.fixture
def mock_balance_guard():
    """Mock BalanceGuard that approves every transfer."""
    guard = MagicMock()
    guard.can_afford = AsyncMock(
        return_value=AffordabilityResult(
            can_afford=True, ton_balance=10 * COIN, jetton_balance=1000 * COIN
        )
    )
    guard.get_balances = AsyncMock()
    return guard


@pytest.fixture
def mock_broadcaster():
    """Mock TransactionBroadcaster that submits successfully."""
    broadcaster = MagicMock()
    broadcaster.lock = asyncio.Lock()
    broadcaster.current_sequence_number = AsyncMock(return_value=7)

    async def _broadcast(
        params: JettonTransferParams, sequence_number=None, valid_until=None
    ):
        return BroadcastResult(
            transaction_hash=f"pending-1700000000000-{sequence_number}",
            sequence_number=sequence_number,
            from_address=OPERATOR_ADDRESS,
            to_address=params.destination,
            amount=params.amount,
            timestamp=utcnow(),
            valid_until=valid_until,
        )

    broadcaster.broadcast = AsyncMock(side_effect=_broadcast)
    # Signed messages are already expired unless a test says otherwise
    broadcaster.message_deadline = MagicMock(return_value=0)
    broadcaster.sequence_number_changed = AsyncMock(
        return_value=SequenceCheck(current_sequence_number=7, changed=False)
    )
    return broadcaster


@pytest.fixture
def mock_chain_client():
    """Mock TonChainClient."""
    client = MagicMock()
    client.get_operator_address = AsyncMock(
        return_value=Address(OPERATOR_RAW)
    )
    client.get_operator_jetton_wallet = AsyncMock(
        return_value=Address(OPERATOR_JETTON_WALLET_RAW)
    )
    client.get_ton_balance = AsyncMock(return_value=10 * COIN)
    client.get_jetton_balance = AsyncMock(return_value=1000 * COIN)
    client.get_jetton_wallet_address = AsyncMock(
        return_value=Address(OPERATOR_JETTON_WALLET_RAW)
    )
    client.get_seqno = AsyncMock(return_value=7)
    client.send_transfer = AsyncMock()
    client.get_recent_transfers = AsyncMock(return_value={})
    return client


@pytest.fixture
def mock_api_key():
    """API key accepted by the application."""
    return settings.API_AUTH_TOKEN.get_secret_value()


@pytest.fixture
def mock_auth_header(mock_api_key):
    """Authorization header."""
    return {"Authorization": f"Bearer {mock_api_key}"}


@pytest.fixture
async def client(session_factory, mock_chain_client, mock_balance_guard):
    """Create an async test client with overridden dependencies."""
    from corgi_rewards.api.dependencies import (
        get_balance_guard,
        get_chain_client,
    )
    from corgi_rewards.database import get_session

    async def override_get_session():
        async with session_factory() as session:
            yield session

    # The lifespan does not run, so pipeline components are mocked
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_chain_client] = lambda: mock_chain_client
    app.dependency_overrides[get_balance_guard] = lambda: mock_balance_guard

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    # Clean up dependency overrides
    app.dependency_overrides.clear()
