import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, asc, desc, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from corgi_rewards.blockchain.models import (
    CorgiSighting,
    OperatorLedger,
    Transaction,
    query_id_for,
)
from corgi_rewards.constants import (
    PLACEHOLDER_HASH_PREFIX,
    TransactionStatus,
    TransactionType,
)
from corgi_rewards.exceptions import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from corgi_rewards.utils import utcnow


logger = logging.getLogger(__name__)

LEDGER_ID = 1
SIGHTING_ENTITY_TYPE = "corgi_sighting"


def is_placeholder_hash(transaction_hash: Optional[str]) -> bool:
    return bool(transaction_hash) and transaction_hash.startswith(  # type: ignore[union-attr]
        PLACEHOLDER_HASH_PREFIX
    )


class LedgerRepository:
    """
    Repository for the operator ledger, transactions and sighting state.

    Mutating methods only stage changes on the session. Callers group
    them into one unit of work and finish it with ``commit``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        """
        Commit the current unit of work.

        Raises:
            ConflictError: If a unique constraint was violated
        """
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("Ledger commit rejected by constraint: %s", e.orig)
            raise ConflictError(
                "Conflicting ledger update, the record already exists"
            ) from e

    # Operator ledger

    async def get_ledger(
        self, for_update: bool = False
    ) -> Optional[OperatorLedger]:
        """
        Get the singleton operator ledger row.

        Args:
            for_update: Lock the row until the unit of work ends

        Returns:
            OperatorLedger or None if the operator is not onboarded
        """
        query = select(OperatorLedger).where(
            OperatorLedger.id == LEDGER_ID  # type: ignore[arg-type]
        )
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalars().first()

    async def require_ledger(self, for_update: bool = False) -> OperatorLedger:
        ledger = await self.get_ledger(for_update=for_update)
        if ledger is None:
            raise NotFoundError("Operator ledger is not initialized")
        return ledger

    async def initialize_ledger(
        self, wallet_address: str, initial_balance: int = 0
    ) -> OperatorLedger:
        """
        Create the singleton ledger row once, at operator onboarding.

        Args:
            wallet_address: Operator wallet address
            initial_balance: Initial deposit in smallest units

        Returns:
            OperatorLedger: Created ledger
        """
        if initial_balance < 0:
            raise ValidationError("Initial balance cannot be negative")

        if await self.get_ledger() is not None:
            raise ConflictError("Operator ledger is already initialized")

        ledger = OperatorLedger(
            id=LEDGER_ID,
            wallet_address=wallet_address,
            current_balance=initial_balance,
            total_distributed=0,
        )
        self.session.add(ledger)
        await self.commit()
        await self.session.refresh(ledger)

        logger.info(
            "Initialized operator ledger for %s with balance=%s",
            wallet_address,
            initial_balance,
        )
        return ledger

    async def record_deposit(self, amount: int) -> OperatorLedger:
        """
        Credit a deposit to the ledger.

        Args:
            amount: Deposited amount in smallest units

        Returns:
            OperatorLedger: Updated ledger
        """
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")

        ledger = await self.require_ledger(for_update=True)
        ledger.current_balance += amount
        ledger.updated_at = utcnow()
        await self.commit()
        await self.session.refresh(ledger)

        logger.info(
            "Recorded deposit of %s, balance=%s",
            amount,
            ledger.current_balance,
        )
        return ledger

    def debit(self, ledger: OperatorLedger, amount: int) -> None:
        """Move ``amount`` from the balance to the distributed total."""
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        if ledger.current_balance < amount:
            raise InsufficientFundsError(
                f"Ledger balance {ledger.current_balance} is lower than "
                f"the requested amount {amount}"
            )
        ledger.current_balance -= amount
        ledger.total_distributed += amount
        ledger.updated_at = utcnow()

    def credit(self, ledger: OperatorLedger, amount: int) -> None:
        """Reverse a debit."""
        if amount <= 0 or ledger.total_distributed < amount:
            raise ConflictError(
                f"Cannot reverse {amount}, only "
                f"{ledger.total_distributed} was distributed"
            )
        ledger.current_balance += amount
        ledger.total_distributed -= amount
        ledger.updated_at = utcnow()

    # Transactions

    def add_reward_transaction(
        self,
        from_wallet: str,
        to_wallet: str,
        amount: int,
        sighting_id: int,
    ) -> Transaction:
        """Stage a pending reward transaction for a sighting."""
        transaction_id = uuid.uuid4()
        transaction = Transaction(
            id=transaction_id,
            query_id=query_id_for(transaction_id),
            from_wallet=from_wallet,
            to_wallet=to_wallet,
            amount=amount,
            transaction_type=TransactionType.REWARD,
            related_entity_id=str(sighting_id),
            related_entity_type=SIGHTING_ENTITY_TYPE,
            status=TransactionStatus.PENDING,
        )
        self.session.add(transaction)
        return transaction

    async def get_transaction(
        self, transaction_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Transaction]:
        query = select(Transaction).where(
            Transaction.id == transaction_id  # type: ignore[arg-type]
        )
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_active_reward_transaction(
        self, sighting_id: int
    ) -> Optional[Transaction]:
        """Get a non-failed reward transaction of a sighting, if any."""
        query = select(Transaction).where(
            Transaction.related_entity_id == str(sighting_id),  # type: ignore[arg-type]
            Transaction.related_entity_type == SIGHTING_ENTITY_TYPE,  # type: ignore[arg-type]
            Transaction.transaction_type == TransactionType.REWARD,  # type: ignore[arg-type]
            Transaction.status != TransactionStatus.FAILED,  # type: ignore[arg-type]
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    def update_transaction_status(
        self,
        transaction: Transaction,
        status: str,
        transaction_hash: Optional[str] = None,
        failure_reason: Optional[str] = None,
        last_error: Optional[str] = None,
        sequence_number: Optional[int] = None,
    ) -> Transaction:
        """
        Move a transaction to ``status``.

        Status only moves forward (pending -> broadcasting ->
        completed|failed, pending -> failed). A hash is written once; the
        only allowed overwrite replaces a placeholder with a real hash.

        Args:
            transaction: Transaction to update
            status: New status
            transaction_hash: Placeholder or on-chain hash
            failure_reason: Reason kept for audit
            last_error: Last raw error message
            sequence_number: Operator sequence number used to sign

        Returns:
            Transaction: Updated transaction

        Raises:
            ConflictError: On a backward transition or a hash overwrite
        """
        if status != transaction.status:
            allowed = TransactionStatus.TRANSITIONS.get(
                transaction.status, set()
            )
            if status not in allowed:
                raise ConflictError(
                    f"Transaction {transaction.id} cannot move from "
                    f"{transaction.status} to {status}"
                )

        if transaction_hash and transaction_hash != transaction.transaction_hash:
            current = transaction.transaction_hash
            if current and not (
                is_placeholder_hash(current)
                and not is_placeholder_hash(transaction_hash)
            ):
                raise ConflictError(
                    f"Transaction {transaction.id} already has hash {current}"
                )
            transaction.transaction_hash = transaction_hash

        now = utcnow()
        if (
            status == TransactionStatus.BROADCASTING
            and transaction.broadcast_at is None
        ):
            transaction.broadcast_at = now
        if status in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            transaction.completed_at = transaction.completed_at or now

        transaction.status = status
        if failure_reason is not None:
            transaction.failure_reason = failure_reason
        if last_error is not None:
            transaction.last_error = last_error
        if sequence_number is not None:
            transaction.sequence_number = sequence_number

        return transaction

    async def list_transactions(
        self,
        status: Optional[str] = None,
        related_entity_id: Optional[str] = None,
        transaction_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        Get transactions with optional filters.

        Args:
            status: Filter by status
            related_entity_id: Filter by triggering entity id
            transaction_type: Filter by type ("reward" or "purchase")
            limit: Maximum number of records to return
            offset: Number of records to skip

        Returns:
            List[Transaction]: Newest first
        """
        query = select(Transaction).order_by(
            desc(Transaction.created_at)  # type: ignore[arg-type]
        )

        if status:
            query = query.where(
                Transaction.status == status  # type: ignore[arg-type]
            )

        if related_entity_id:
            query = query.where(
                Transaction.related_entity_id == related_entity_id  # type: ignore[arg-type]
            )

        if transaction_type:
            query = query.where(
                Transaction.transaction_type == transaction_type  # type: ignore[arg-type]
            )

        query = query.limit(limit).offset(offset)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_unsettled(
        self, pending_before: datetime, limit: int = 50
    ) -> list[Transaction]:
        """
        Get transactions whose on-chain fate is still open, oldest first.

        Covers every ``broadcasting`` transaction plus ``pending`` ones
        created before ``pending_before``. Younger pending transactions
        may still be in flight on the synchronous path.
        """
        query = (
            select(Transaction)
            .where(
                or_(
                    Transaction.status == TransactionStatus.BROADCASTING,  # type: ignore[arg-type]
                    and_(
                        Transaction.status == TransactionStatus.PENDING,  # type: ignore[arg-type]
                        Transaction.created_at < pending_before,  # type: ignore[arg-type,operator]
                    ),
                )
            )
            .order_by(asc(Transaction.created_at))  # type: ignore[arg-type]
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # Sightings

    async def get_sighting(
        self, sighting_id: int, for_update: bool = False
    ) -> Optional[CorgiSighting]:
        query = select(CorgiSighting).where(
            CorgiSighting.id == sighting_id  # type: ignore[arg-type]
        )
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalars().first()

    async def require_sighting(
        self, sighting_id: int, for_update: bool = False
    ) -> CorgiSighting:
        sighting = await self.get_sighting(sighting_id, for_update=for_update)
        if sighting is None:
            raise NotFoundError(f"Sighting {sighting_id} not found")
        return sighting

    async def get_sighting_for_transaction(
        self, transaction: Transaction
    ) -> Optional[CorgiSighting]:
        if (
            transaction.related_entity_type != SIGHTING_ENTITY_TYPE
            or not transaction.related_entity_id
        ):
            return None
        return await self.get_sighting(
            int(transaction.related_entity_id), for_update=True
        )
