from datetime import timedelta, timezone

import pytest

from corgi_rewards.blockchain.models import OperatorLedger, Transaction
from corgi_rewards.blockchain.repository import (
    LedgerRepository,
    is_placeholder_hash,
)
from corgi_rewards.constants import TransactionStatus
from corgi_rewards.exceptions import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from corgi_rewards.utils import as_utc, utcnow
from conftest import COIN, OPERATOR_ADDRESS, RECIPIENT_ADDRESS


REAL_HASH = "ab" * 32


class TestLedgerRepository:
    """Tests for the ledger repository."""

    @pytest.mark.asyncio
    async def test_initialize_ledger(self, test_session):
        """Test operator onboarding creates the singleton row."""
        # Arrange
        repo = LedgerRepository(test_session)

        # Act
        ledger = await repo.initialize_ledger(OPERATOR_ADDRESS, 10 * COIN)

        # Assert
        assert ledger.id == 1
        assert ledger.current_balance == 10 * COIN
        assert ledger.total_distributed == 0

    @pytest.mark.asyncio
    async def test_initialize_ledger_twice_conflicts(self, test_session):
        """Test the ledger can only be initialized once."""
        # Arrange
        repo = LedgerRepository(test_session)
        await repo.initialize_ledger(OPERATOR_ADDRESS)

        # Act & Assert
        with pytest.raises(ConflictError):
            await repo.initialize_ledger(OPERATOR_ADDRESS)

    @pytest.mark.asyncio
    async def test_record_deposit(self, test_session, create_ledger):
        """Test a deposit increases the balance only."""
        # Arrange
        await create_ledger(current_balance=COIN, total_distributed=2 * COIN)
        repo = LedgerRepository(test_session)

        # Act
        ledger = await repo.record_deposit(5 * COIN)

        # Assert
        assert ledger.current_balance == 6 * COIN
        assert ledger.total_distributed == 2 * COIN

    @pytest.mark.asyncio
    async def test_record_deposit_rejects_non_positive(
        self, test_session, create_ledger
    ):
        """Test a zero deposit is rejected."""
        # Arrange
        await create_ledger()
        repo = LedgerRepository(test_session)

        # Act & Assert
        with pytest.raises(ValidationError):
            await repo.record_deposit(0)

    @pytest.mark.asyncio
    async def test_require_ledger_missing(self, test_session):
        """Test a missing ledger raises NotFoundError."""
        # Act & Assert
        with pytest.raises(NotFoundError):
            await LedgerRepository(test_session).require_ledger()

    def test_debit_and_credit_conserve_total(self):
        """Test debit and credit move value between the two columns."""
        # Arrange
        repo = LedgerRepository(session=None)
        ledger = OperatorLedger(
            wallet_address=OPERATOR_ADDRESS,
            current_balance=10 * COIN,
            total_distributed=0,
        )

        # Act
        repo.debit(ledger, 4 * COIN)
        after_debit = (ledger.current_balance, ledger.total_distributed)
        repo.credit(ledger, 4 * COIN)

        # Assert
        assert after_debit == (6 * COIN, 4 * COIN)
        assert ledger.current_balance == 10 * COIN
        assert ledger.total_distributed == 0

    def test_debit_never_goes_negative(self):
        """Test a debit larger than the balance is refused."""
        # Arrange
        repo = LedgerRepository(session=None)
        ledger = OperatorLedger(
            wallet_address=OPERATOR_ADDRESS, current_balance=COIN
        )

        # Act & Assert
        with pytest.raises(InsufficientFundsError):
            repo.debit(ledger, COIN + 1)
        assert ledger.current_balance == COIN

    def test_credit_beyond_distributed_conflicts(self):
        """Test a credit cannot exceed what was distributed."""
        # Arrange
        repo = LedgerRepository(session=None)
        ledger = OperatorLedger(
            wallet_address=OPERATOR_ADDRESS,
            current_balance=COIN,
            total_distributed=COIN,
        )

        # Act & Assert
        with pytest.raises(ConflictError):
            repo.credit(ledger, 2 * COIN)

    @pytest.mark.asyncio
    async def test_status_moves_forward(self, test_session, create_transaction):
        """Test the allowed transaction lifecycle."""
        # Arrange
        created = await create_transaction(
            status=TransactionStatus.PENDING, transaction_hash=None
        )
        repo = LedgerRepository(test_session)
        transaction = await repo.get_transaction(created.id)

        # Act
        repo.update_transaction_status(
            transaction,
            TransactionStatus.BROADCASTING,
            transaction_hash="pending-1-7",
        )
        repo.update_transaction_status(
            transaction,
            TransactionStatus.COMPLETED,
            transaction_hash=REAL_HASH,
        )

        # Assert
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.transaction_hash == REAL_HASH
        assert transaction.completed_at is not None

    @pytest.mark.asyncio
    async def test_status_never_moves_back(
        self, test_session, create_transaction
    ):
        """Test a completed transaction cannot be reopened."""
        # Arrange
        created = await create_transaction(
            status=TransactionStatus.COMPLETED, transaction_hash=REAL_HASH
        )
        repo = LedgerRepository(test_session)
        transaction = await repo.get_transaction(created.id)

        # Act & Assert
        with pytest.raises(ConflictError):
            repo.update_transaction_status(
                transaction, TransactionStatus.BROADCASTING
            )
        with pytest.raises(ConflictError):
            repo.update_transaction_status(
                transaction, TransactionStatus.FAILED
            )

    @pytest.mark.asyncio
    async def test_real_hash_is_write_once(
        self, test_session, create_transaction
    ):
        """Test a real hash cannot be replaced."""
        # Arrange
        created = await create_transaction(transaction_hash=REAL_HASH)
        repo = LedgerRepository(test_session)
        transaction = await repo.get_transaction(created.id)

        # Act & Assert
        with pytest.raises(ConflictError):
            repo.update_transaction_status(
                transaction,
                TransactionStatus.COMPLETED,
                transaction_hash="cd" * 32,
            )

    @pytest.mark.asyncio
    async def test_duplicate_hash_rejected_on_commit(
        self, test_session, create_transaction
    ):
        """Test transaction hashes are unique across transactions."""
        # Arrange
        await create_transaction(transaction_hash=REAL_HASH)
        created = await create_transaction()
        repo = LedgerRepository(test_session)
        transaction = await repo.get_transaction(created.id)
        repo.update_transaction_status(
            transaction,
            TransactionStatus.COMPLETED,
            transaction_hash=REAL_HASH,
        )

        # Act & Assert
        with pytest.raises(ConflictError):
            await repo.commit()

    @pytest.mark.asyncio
    async def test_add_reward_transaction(self, test_session, create_ledger):
        """Test a staged reward transaction gets a query id."""
        # Arrange
        await create_ledger()
        repo = LedgerRepository(test_session)

        # Act
        transaction = repo.add_reward_transaction(
            OPERATOR_ADDRESS, RECIPIENT_ADDRESS, COIN, sighting_id=5
        )
        await repo.commit()

        # Assert
        assert transaction.status == TransactionStatus.PENDING
        assert 0 <= transaction.query_id < 2**63
        assert transaction.related_entity_id == "5"
        active = await repo.get_active_reward_transaction(5)
        assert active.id == transaction.id

    @pytest.mark.asyncio
    async def test_list_transactions_filters(
        self, test_session, create_transaction
    ):
        """Test listing filters by status and entity."""
        # Arrange
        await create_transaction(sighting_id=1)
        await create_transaction(
            sighting_id=2,
            status=TransactionStatus.FAILED,
            transaction_hash=None,
        )
        repo = LedgerRepository(test_session)

        # Act
        broadcasting = await repo.list_transactions(
            status=TransactionStatus.BROADCASTING
        )
        for_second = await repo.list_transactions(related_entity_id="2")

        # Assert
        assert len(broadcasting) == 1
        assert broadcasting[0].related_entity_id == "1"
        assert [t.status for t in for_second] == [TransactionStatus.FAILED]

    @pytest.mark.asyncio
    async def test_list_unsettled(self, test_session, create_transaction):
        """Test broadcasting and stale pending transactions are listed."""
        # Arrange
        now = utcnow()
        broadcasting = await create_transaction(created_at=now)
        stale = await create_transaction(
            status=TransactionStatus.PENDING,
            transaction_hash=None,
            created_at=now - timedelta(hours=1),
        )
        await create_transaction(
            status=TransactionStatus.PENDING, transaction_hash=None
        )
        await create_transaction(
            status=TransactionStatus.COMPLETED, transaction_hash=REAL_HASH
        )

        # Act
        result = await LedgerRepository(test_session).list_unsettled(
            pending_before=now - timedelta(minutes=10)
        )

        # Assert
        assert [t.id for t in result] == [stale.id, broadcasting.id]
        assert isinstance(result[0], Transaction)

    @pytest.mark.asyncio
    async def test_timestamps_are_utc(self, test_session, create_ledger, fetch):
        """Test timestamps are written aware and read back as UTC."""
        # Arrange
        ledger = await create_ledger()
        repo = LedgerRepository(test_session)

        # Act
        transaction = repo.add_reward_transaction(
            from_wallet=ledger.wallet_address,
            to_wallet=RECIPIENT_ADDRESS,
            amount=COIN,
            sighting_id=1,
        )
        await repo.commit()
        stored = await fetch(Transaction, transaction.id)

        # Assert
        assert transaction.created_at.tzinfo is not None
        assert as_utc(stored.created_at).tzinfo == timezone.utc
        assert as_utc(stored.created_at) == transaction.created_at

    def test_is_placeholder_hash(self):
        """Test placeholder detection."""
        # Assert
        assert is_placeholder_hash("pending-1700000000000-7")
        assert not is_placeholder_hash(REAL_HASH)
        assert not is_placeholder_hash(None)
