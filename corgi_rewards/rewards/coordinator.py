"""
Reward distribution saga.

    START -> PRECHECK -> LEDGER_DEBITED -> BROADCAST_ATTEMPTED
          -> SETTLED | COMPENSATED | (permanent failure)

The blockchain cannot take part in a local database transaction, so the
ledger is debited eagerly and a single compensating step reverses the
debit when the transfer provably never reached the network.
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from corgi_rewards.blockchain.balance import BalanceGuard
from corgi_rewards.blockchain.broadcaster import TransactionBroadcaster
from corgi_rewards.blockchain.errors import ChainError, describe, to_chain_error
from corgi_rewards.blockchain.messages import parse_address
from corgi_rewards.blockchain.repository import LedgerRepository
from corgi_rewards.blockchain.schemas import BroadcastResult, JettonTransferParams
from corgi_rewards.config import Settings, settings
from corgi_rewards.constants import (
    RewardStatus,
    SightingStatus,
    TransactionStatus,
)
from corgi_rewards.exceptions import (
    ConflictError,
    InsufficientFundsError,
    ValidationError,
)
from corgi_rewards.rewards.calculator import calculate_reward_amount, format_reward
from corgi_rewards.rewards.schemas import (
    DistributionOutcome,
    InsufficientFunds,
    PermanentFailure,
    RetryableFailure,
    Settled,
)
from corgi_rewards.utils import utcnow


logger = logging.getLogger(__name__)

# Seconds past expiry before an unsent message is considered dead
EXPIRY_MARGIN = 5


class RewardDistributionCoordinator:
    """
    Drives one reward from a buddy confirmation to a submitted transfer.

    This is the only component that mutates ledger, transaction and
    sighting reward state for reward distribution.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        balance_guard: BalanceGuard,
        broadcaster: TransactionBroadcaster,
        config: Settings = settings,
    ) -> None:
        self.session_factory = session_factory
        self.balance_guard = balance_guard
        self.broadcaster = broadcaster
        self.broadcast_timeout = config.BROADCAST_TIMEOUT
        self.seqno_poll_interval = config.SEQNO_POLL_INTERVAL
        self.forward_amount = config.TRANSFER_FORWARD_AMOUNT
        self.gas_amount = config.TRANSFER_GAS_AMOUNT

    async def distribute_reward(
        self,
        sighting_id: int,
        recipient_address: str,
        amount: Optional[int] = None,
    ) -> DistributionOutcome:
        """
        Confirm a sighting and pay its reward.

        Args:
            sighting_id: Sighting being confirmed by the buddy
            recipient_address: Reporter's TON wallet address
            amount: Reward in smallest units (derived from the corgi
                count when omitted)

        Returns:
            DistributionOutcome: Settled, InsufficientFunds,
                RetryableFailure or PermanentFailure

        Raises:
            ValidationError: Malformed input, nothing mutated
            ConflictError: Sighting already responded to or rewarded
            NotFoundError: Unknown sighting or ledger not initialized
        """
        recipient = parse_address(recipient_address).to_str()
        if amount is not None and amount <= 0:
            raise ValidationError("Reward amount must be positive")

        # Local checks, before any network call
        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            sighting = await repo.require_sighting(sighting_id)
            await self._ensure_rewardable(repo, sighting_id, sighting.status)

            if amount is None:
                amount = calculate_reward_amount(sighting.corgi_count)

            ledger = await repo.require_ledger()
            if ledger.current_balance < amount:
                reason = (
                    f"Ledger balance {ledger.current_balance} is lower than "
                    f"the requested amount {amount}"
                )
                logger.warning(
                    "Reward for sighting %s rejected: %s", sighting_id, reason
                )
                return InsufficientFunds(reason=reason)

        # PRECHECK
        affordability = await self.balance_guard.can_afford(
            amount, gas_amount=self.gas_amount
        )
        if not affordability.can_afford:
            reason = affordability.reason or "operator cannot afford transfer"
            logger.warning(
                "Reward for sighting %s rejected: %s", sighting_id, reason
            )
            return InsufficientFunds(reason=reason)

        # LEDGER_DEBITED
        try:
            transaction_id, query_id = await self._debit(
                sighting_id, recipient, amount
            )
        except InsufficientFundsError as e:
            return InsufficientFunds(reason=str(e.detail))

        logger.info(
            "Debited %s jettons for sighting %s (transaction %s)",
            format_reward(amount),
            sighting_id,
            transaction_id,
        )

        # BROADCAST_ATTEMPTED
        params = JettonTransferParams(
            destination=recipient,
            amount=amount,
            query_id=query_id,
            forward_amount=self.forward_amount,
        )
        error: Optional[ChainError] = None
        result: Optional[BroadcastResult] = None
        sent = False
        async with self.broadcaster.lock:
            sequence_number: Optional[int] = None
            valid_until = self.broadcaster.message_deadline()
            try:
                sequence_number = (
                    await self.broadcaster.current_sequence_number()
                )
                result = await asyncio.wait_for(
                    self.broadcaster.broadcast(
                        params, sequence_number, valid_until=valid_until
                    ),
                    timeout=self.broadcast_timeout,
                )
            except asyncio.TimeoutError as e:
                # The message may have been handed over before the timeout
                error = to_chain_error(e, "Broadcast", submitted=True)
            except Exception as e:  # pylint: disable=broad-exception-caught
                error = to_chain_error(e, "Broadcast")

            if error is not None:
                logger.warning(
                    "Broadcast of transaction %s failed (%s): %s",
                    transaction_id,
                    error.classification.value,
                    error,
                )
                sent = await self._may_have_landed(
                    error, sequence_number, valid_until
                )

        if error is None:
            return await self._settle(transaction_id, result)  # type: ignore[arg-type]

        if sent:
            return await self._fail_permanently(
                transaction_id, error, sequence_number
            )

        await self._compensate(transaction_id, describe(error))
        return RetryableFailure(
            reason=f"Reward was not sent: {error}",
            transaction_id=transaction_id,
        )

    async def _ensure_rewardable(
        self, repo: LedgerRepository, sighting_id: int, status: str
    ) -> None:
        if status != SightingStatus.PENDING:
            raise ConflictError(
                f"Sighting {sighting_id} was already responded to ({status})"
            )
        existing = await repo.get_active_reward_transaction(sighting_id)
        if existing is not None:
            raise ConflictError(
                f"Sighting {sighting_id} already has reward transaction "
                f"{existing.id} ({existing.status})"
            )

    async def _debit(
        self, sighting_id: int, recipient: str, amount: int
    ) -> tuple[uuid.UUID, int]:
        """Debit the ledger, record the transaction and confirm at once."""
        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            ledger = await repo.require_ledger(for_update=True)
            sighting = await repo.require_sighting(sighting_id, for_update=True)
            await self._ensure_rewardable(repo, sighting_id, sighting.status)

            repo.debit(ledger, amount)
            transaction = repo.add_reward_transaction(
                from_wallet=ledger.wallet_address,
                to_wallet=recipient,
                amount=amount,
                sighting_id=sighting_id,
            )
            sighting.status = SightingStatus.CONFIRMED
            sighting.responded_at = utcnow()
            await repo.commit()
            return transaction.id, transaction.query_id

    async def _may_have_landed(
        self,
        error: ChainError,
        sequence_number: Optional[int],
        valid_until: int,
    ) -> bool:
        """
        Decide whether a failed broadcast may have reached the network.

        Retryable errors are settled by re-reading the sequence number.
        A message that may already have been handed over can still be
        accepted until ``valid_until``, so the sequence number is polled
        until it moves or the message has expired. Non-retryable errors
        count as sent once the message was handed to the network. If the
        sequence number cannot be read the transfer counts as sent.
        """
        if sequence_number is None:
            # Failed before anything was signed
            return False

        if not error.retryable:
            return error.submitted

        try:
            while True:
                expired = time.time() > valid_until + EXPIRY_MARGIN
                check = await self.broadcaster.sequence_number_changed(
                    sequence_number
                )
                if check.changed or expired or not error.submitted:
                    return check.changed
                await asyncio.sleep(self.seqno_poll_interval)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(
                "Sequence number check failed, treating transfer with "
                "seqno=%s as possibly sent: %s",
                sequence_number,
                e,
            )
            return True

    async def _settle(
        self, transaction_id: uuid.UUID, result: BroadcastResult
    ) -> DistributionOutcome:
        try:
            async with self.session_factory() as session:
                repo = LedgerRepository(session)
                transaction = await repo.get_transaction(
                    transaction_id, for_update=True
                )
                if transaction is None:
                    raise ConflictError(
                        f"Transaction {transaction_id} disappeared"
                    )
                repo.update_transaction_status(
                    transaction,
                    TransactionStatus.BROADCASTING,
                    transaction_hash=result.transaction_hash,
                    sequence_number=result.sequence_number,
                )

                sighting = await repo.get_sighting_for_transaction(transaction)
                if sighting is not None:
                    sighting.reward_status = RewardStatus.DISTRIBUTED
                    sighting.reward_distributed_at = utcnow()

                ledger = await repo.require_ledger(for_update=True)
                ledger.last_transaction_hash = result.transaction_hash
                ledger.updated_at = utcnow()
                await repo.commit()
        except Exception as e:  # pylint: disable=broad-exception-caught
            # The transfer is out; only forward remediation is possible.
            reason = f"submitted but not recorded: {e}"
            logger.exception(
                "Transfer %s was submitted but could not be recorded: %s",
                transaction_id,
                e,
            )
            try:
                await self._mark_failed(
                    transaction_id, reason, result.sequence_number
                )
            except Exception as mark_error:  # pylint: disable=broad-exception-caught
                logger.error(
                    "Could not mark transaction %s as failed, it stays "
                    "pending for reconciliation: %s",
                    transaction_id,
                    mark_error,
                )
            return PermanentFailure(
                transaction_id=transaction_id, reason=reason
            )

        logger.info(
            "Settled transaction %s with placeholder %s (seqno=%s)",
            transaction_id,
            result.transaction_hash,
            result.sequence_number,
        )
        return Settled(
            transaction_id=transaction_id,
            placeholder_hash=result.transaction_hash,
            amount=result.amount,
            sequence_number=result.sequence_number,
        )

    async def _compensate(self, transaction_id: uuid.UUID, reason: str) -> bool:
        """
        Reverse a debit whose transfer never reached the network.

        Only a transaction still in ``pending`` is compensated, so running
        this twice never credits twice.

        Returns:
            bool: True if the ledger was credited back
        """
        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            transaction = await repo.get_transaction(
                transaction_id, for_update=True
            )
            if (
                transaction is None
                or transaction.status != TransactionStatus.PENDING
            ):
                logger.warning(
                    "Skipping compensation of transaction %s in status %s",
                    transaction_id,
                    transaction.status if transaction else None,
                )
                return False

            ledger = await repo.require_ledger(for_update=True)
            repo.credit(ledger, transaction.amount)

            sighting = await repo.get_sighting_for_transaction(transaction)
            if sighting is not None:
                sighting.status = SightingStatus.PENDING
                sighting.responded_at = None
                sighting.reward_status = RewardStatus.PENDING

            repo.update_transaction_status(
                transaction,
                TransactionStatus.FAILED,
                failure_reason=f"compensated: {reason}",
                last_error=reason,
            )
            await repo.commit()

        logger.warning(
            "Compensated transaction %s, credited %s back: %s",
            transaction_id,
            transaction.amount,
            reason,
        )
        return True

    async def compensate(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        expected_sequence_number: Optional[int] = None,
    ) -> bool:
        """
        Compensate an attempt from outside the synchronous path.

        The compensation is refused if the operator sequence number moved
        past the one the attempt used, since the transfer may already be
        on chain. Without a known sequence number nothing can be proven
        and the compensation is refused as well.

        Args:
            transaction_id: Transaction to compensate
            reason: Reason kept for audit
            expected_sequence_number: Sequence number the attempt used
                (defaults to the one recorded on the transaction)

        Returns:
            bool: True if the ledger was credited back
        """
        expected = expected_sequence_number
        if expected is None:
            async with self.session_factory() as session:
                transaction = await LedgerRepository(session).get_transaction(
                    transaction_id
                )
                if transaction is not None:
                    expected = transaction.sequence_number

        if expected is None:
            logger.warning(
                "Refusing to compensate transaction %s: no sequence number "
                "to prove the transfer never landed",
                transaction_id,
            )
            return False

        async with self.broadcaster.lock:
            check = await self.broadcaster.sequence_number_changed(expected)
        if check.changed:
            logger.warning(
                "Refusing to compensate transaction %s: sequence "
                "number moved to %s",
                transaction_id,
                check.current_sequence_number,
            )
            return False
        return await self._compensate(transaction_id, reason)

    async def _fail_permanently(
        self,
        transaction_id: uuid.UUID,
        error: ChainError,
        sequence_number: Optional[int],
    ) -> PermanentFailure:
        reason = describe(error)
        await self._mark_failed(
            transaction_id,
            f"needs manual reconciliation: {reason}",
            sequence_number,
            last_error=reason,
        )

        logger.error(
            "Transaction %s failed permanently (seqno=%s), manual "
            "reconciliation required: %s",
            transaction_id,
            sequence_number,
            reason,
        )
        return PermanentFailure(transaction_id=transaction_id, reason=reason)

    async def _mark_failed(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        sequence_number: Optional[int],
        last_error: Optional[str] = None,
    ) -> None:
        """Mark a pending attempt failed without crediting the ledger."""
        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            transaction = await repo.get_transaction(
                transaction_id, for_update=True
            )
            if (
                transaction is not None
                and transaction.status == TransactionStatus.PENDING
            ):
                repo.update_transaction_status(
                    transaction,
                    TransactionStatus.FAILED,
                    failure_reason=reason,
                    last_error=last_error or reason,
                    sequence_number=sequence_number,
                )
                sighting = await repo.get_sighting_for_transaction(transaction)
                if sighting is not None:
                    sighting.reward_status = RewardStatus.FAILED
                await repo.commit()
