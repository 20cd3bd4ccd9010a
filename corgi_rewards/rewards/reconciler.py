import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.blockchain.models import Transaction
from corgi_rewards.blockchain.repository import LedgerRepository
from corgi_rewards.blockchain.schemas import OnChainTransfer
from corgi_rewards.config import Settings, settings
from corgi_rewards.constants import RewardStatus, TransactionStatus
from corgi_rewards.exceptions import ConflictError
from corgi_rewards.rewards.schemas import ReconcileSummary
from corgi_rewards.utils import as_utc, utcnow


logger = logging.getLogger(__name__)

NOT_OBSERVED_REASON = "not observed on chain"
ABORTED_REASON = "aborted on chain"
UNSETTLED = (TransactionStatus.PENDING, TransactionStatus.BROADCASTING)


class TransactionReconciler:
    """
    Forward reconciliation of broadcast transfers.

    Matches ``broadcasting`` transactions, and ``pending`` ones old enough
    to have left the synchronous path, with outgoing operator transfers
    by query id. Placeholder hashes are replaced with on-chain hashes and
    each transaction is closed as ``completed`` or ``failed``. A pending
    transaction is never credited back here.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chain_client: TonChainClient,
        config: Settings = settings,
    ) -> None:
        self.session_factory = session_factory
        self.chain_client = chain_client
        self.batch_size = config.RECONCILE_BATCH_SIZE
        self.lookback = config.RECONCILE_TX_LOOKBACK
        self.max_age = timedelta(seconds=config.RECONCILE_MAX_AGE)
        self.pending_grace = timedelta(
            seconds=config.RECONCILE_PENDING_GRACE
        )

    async def reconcile(self) -> ReconcileSummary:
        """
        Run one reconciliation pass.

        Returns:
            ReconcileSummary: Counts per outcome
        """
        summary = ReconcileSummary()
        now = utcnow()

        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            candidates = await repo.list_unsettled(
                pending_before=now - self.pending_grace,
                limit=self.batch_size,
            )

        summary.scanned = len(candidates)
        if not candidates:
            return summary

        transfers = await self.chain_client.get_recent_transfers(
            self.lookback
        )

        for candidate in candidates:
            try:
                outcome = await self._reconcile_one(
                    candidate, transfers.get(candidate.query_id), now
                )
            except ConflictError as e:
                logger.error(
                    "Could not reconcile transaction %s: %s",
                    candidate.id,
                    e.detail,
                )
                continue

            if outcome == TransactionStatus.COMPLETED:
                summary.completed += 1
            elif outcome == NOT_OBSERVED_REASON:
                summary.expired += 1
            elif outcome == TransactionStatus.FAILED:
                summary.failed += 1
            else:
                summary.pending += 1

        logger.info(
            "Reconciled %s transactions: %s completed, %s failed, "
            "%s expired, %s still pending",
            summary.scanned,
            summary.completed,
            summary.failed,
            summary.expired,
            summary.pending,
        )
        return summary

    async def _reconcile_one(
        self,
        candidate: Transaction,
        transfer: Optional[OnChainTransfer],
        now: datetime,
    ) -> str:
        started = as_utc(candidate.broadcast_at or candidate.created_at)
        if transfer is None and now - started <= self.max_age:
            return TransactionStatus.BROADCASTING

        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            transaction = await repo.get_transaction(
                candidate.id, for_update=True
            )
            if transaction is None or transaction.status not in UNSETTLED:
                return TransactionStatus.BROADCASTING

            placeholder = transaction.transaction_hash
            sighting = await repo.get_sighting_for_transaction(transaction)

            if transfer is None:
                repo.update_transaction_status(
                    transaction,
                    TransactionStatus.FAILED,
                    failure_reason=NOT_OBSERVED_REASON,
                )
                outcome = NOT_OBSERVED_REASON
            elif transfer.success:
                if transaction.status == TransactionStatus.PENDING:
                    # Sent but never recorded by the synchronous path
                    repo.update_transaction_status(
                        transaction, TransactionStatus.BROADCASTING
                    )
                    if sighting is not None:
                        sighting.reward_status = RewardStatus.DISTRIBUTED
                        sighting.reward_distributed_at = now
                repo.update_transaction_status(
                    transaction,
                    TransactionStatus.COMPLETED,
                    transaction_hash=transfer.transaction_hash,
                )
                outcome = TransactionStatus.COMPLETED
            else:
                repo.update_transaction_status(
                    transaction,
                    TransactionStatus.FAILED,
                    transaction_hash=transfer.transaction_hash,
                    failure_reason=ABORTED_REASON,
                )
                outcome = TransactionStatus.FAILED

            if outcome != TransactionStatus.COMPLETED and sighting is not None:
                sighting.reward_status = RewardStatus.FAILED

            if transfer is not None and placeholder is not None:
                ledger = await repo.get_ledger(for_update=True)
                if (
                    ledger is not None
                    and ledger.last_transaction_hash == placeholder
                ):
                    ledger.last_transaction_hash = transfer.transaction_hash

            await repo.commit()

        logger.log(
            logging.INFO
            if outcome == TransactionStatus.COMPLETED
            else logging.ERROR,
            "Transaction %s reconciled as %s (hash %s)",
            candidate.id,
            outcome,
            transfer.transaction_hash if transfer else placeholder,
        )
        return outcome
