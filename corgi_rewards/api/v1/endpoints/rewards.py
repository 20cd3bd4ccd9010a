import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from corgi_rewards.api.dependencies import (
    get_api_key,
    get_coordinator,
    get_reconciler,
)
from corgi_rewards.blockchain.repository import LedgerRepository
from corgi_rewards.database import get_session
from corgi_rewards.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    PermanentChainError,
    RetryableChainError,
)
from corgi_rewards.rewards.coordinator import RewardDistributionCoordinator
from corgi_rewards.rewards.reconciler import TransactionReconciler
from corgi_rewards.rewards.schemas import (
    DistributeRewardRequest,
    InsufficientFunds,
    ReconcileSummary,
    RetryableFailure,
    Settled,
    TransactionRead,
)


logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_QUERY = Query(
    None,
    alias="status",
    description="Transaction status (pending, broadcasting, ...)",
)
ENTITY_QUERY = Query(None, description="Triggering entity id")
LIMIT_QUERY = Query(
    100, gt=0, le=1000, description="Maximum records to return"
)
OFFSET_QUERY = Query(0, ge=0, description="Number of records to skip")


@router.post(
    "/sightings/{sighting_id}/distribute",
    response_model=Settled,
    status_code=status.HTTP_200_OK,
    summary="Confirm a sighting and distribute its reward",
    description=(
        "Confirms the sighting and sends the reward to the recipient. "
        "If amount is omitted, one coin per corgi is paid. "
        "Responds 503 when the reward was not sent and the confirmation "
        "can be retried, and 500 when the confirmation was recorded but "
        "the reward needs investigation."
    ),
)
async def distribute_reward(
    request: DistributeRewardRequest,
    sighting_id: int = Path(..., gt=0, description="Sighting id"),
    _: str = Depends(get_api_key),
    coordinator: RewardDistributionCoordinator = Depends(get_coordinator),
) -> Settled:
    """
    Distribute a sighting reward.

    Args:
        request: Recipient and optional amount
        sighting_id: Sighting being confirmed
        _: API key (from dependency)
        coordinator: Reward distribution coordinator

    Returns:
        Settled: Submitted transfer with its placeholder hash
    """
    outcome = await coordinator.distribute_reward(
        sighting_id=sighting_id,
        recipient_address=request.recipient_address,
        amount=request.amount,
    )

    if isinstance(outcome, Settled):
        return outcome
    if isinstance(outcome, InsufficientFunds):
        raise InsufficientFundsError(detail=outcome.reason)
    if isinstance(outcome, RetryableFailure):
        raise RetryableChainError()

    logger.error(
        "Reward for sighting %s needs investigation: %s",
        sighting_id,
        outcome.reason,
    )
    raise PermanentChainError(transaction_id=str(outcome.transaction_id))


@router.get(
    "/transactions",
    response_model=list[TransactionRead],
    status_code=status.HTTP_200_OK,
    summary="Get reward transaction history",
    description=(
        "Retrieve transactions, newest first. "
        "Can filter by status and by triggering entity id."
    ),
)
async def list_transactions(
    status_filter: Optional[str] = STATUS_QUERY,
    related_entity_id: Optional[str] = ENTITY_QUERY,
    limit: int = LIMIT_QUERY,
    offset: int = OFFSET_QUERY,
    _: str = Depends(get_api_key),
    session: AsyncSession = Depends(get_session),
) -> list[TransactionRead]:
    """
    Get transaction history.

    Args:
        status_filter: Filter by status
        related_entity_id: Filter by triggering entity id
        limit: Maximum number of records to return
        offset: Number of records to skip
        _: API key (from dependency)
        session: Database session

    Returns:
        List[TransactionRead]: Transactions
    """
    repo = LedgerRepository(session)
    transactions = await repo.list_transactions(
        status=status_filter,
        related_entity_id=related_entity_id,
        limit=limit,
        offset=offset,
    )
    return [TransactionRead.model_validate(tx) for tx in transactions]


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionRead,
    status_code=status.HTTP_200_OK,
    summary="Get a reward transaction",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    _: str = Depends(get_api_key),
    session: AsyncSession = Depends(get_session),
) -> TransactionRead:
    repo = LedgerRepository(session)
    transaction = await repo.get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return TransactionRead.model_validate(transaction)


@router.post(
    "/reconcile",
    response_model=ReconcileSummary,
    status_code=status.HTTP_200_OK,
    summary="Reconcile broadcast transactions",
    description=(
        "Match broadcasting transactions with on-chain transfers and "
        "close them as completed or failed."
    ),
)
async def reconcile_transactions(
    _: str = Depends(get_api_key),
    reconciler: TransactionReconciler = Depends(get_reconciler),
) -> ReconcileSummary:
    return await reconciler.reconcile()
