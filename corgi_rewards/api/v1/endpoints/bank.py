from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, PositiveInt
from sqlalchemy.ext.asyncio import AsyncSession

from corgi_rewards.api.dependencies import (
    get_api_key,
    get_balance_guard,
    get_chain_client,
)
from corgi_rewards.blockchain.balance import BalanceGuard
from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.blockchain.messages import parse_address
from corgi_rewards.blockchain.repository import LedgerRepository
from corgi_rewards.blockchain.schemas import BalanceCheckResult, LedgerStatus
from corgi_rewards.database import get_session


router = APIRouter()

FRESH_QUERY = Query(False, description="Bypass the balance cache")


class LedgerInitRequest(BaseModel):
    """Request model for operator onboarding."""

    wallet_address: Optional[str] = Field(
        None,
        description="Operator wallet address. Read from the chain if omitted.",
    )
    initial_balance: int = Field(
        0, ge=0, description="Initial deposit in smallest units"
    )


class DepositRequest(BaseModel):
    """Request model for a ledger deposit."""

    amount: PositiveInt = Field(
        ..., description="Deposited amount in smallest units"
    )


@router.post(
    "/ledger",
    response_model=LedgerStatus,
    status_code=status.HTTP_201_CREATED,
    summary="Initialize the operator ledger",
    description="Create the singleton operator ledger. Allowed once.",
)
async def initialize_ledger(
    request: LedgerInitRequest,
    _: str = Depends(get_api_key),
    session: AsyncSession = Depends(get_session),
    chain_client: TonChainClient = Depends(get_chain_client),
) -> LedgerStatus:
    """
    Initialize the operator ledger.

    Args:
        request: Wallet address and initial balance
        _: API key (from dependency)
        session: Database session
        chain_client: TON client, used when no address is given

    Returns:
        LedgerStatus: Created ledger
    """
    if request.wallet_address:
        wallet_address = parse_address(request.wallet_address).to_str()
    else:
        wallet_address = (await chain_client.get_operator_address()).to_str()

    repo = LedgerRepository(session)
    ledger = await repo.initialize_ledger(
        wallet_address=wallet_address,
        initial_balance=request.initial_balance,
    )
    return LedgerStatus.model_validate(ledger)


@router.post(
    "/deposits",
    response_model=LedgerStatus,
    status_code=status.HTTP_200_OK,
    summary="Record a deposit to the operator ledger",
)
async def record_deposit(
    request: DepositRequest,
    _: str = Depends(get_api_key),
    session: AsyncSession = Depends(get_session),
) -> LedgerStatus:
    repo = LedgerRepository(session)
    ledger = await repo.record_deposit(request.amount)
    return LedgerStatus.model_validate(ledger)


@router.get(
    "/status",
    response_model=LedgerStatus,
    status_code=status.HTTP_200_OK,
    summary="Get the operator ledger",
)
async def get_ledger_status(
    _: str = Depends(get_api_key),
    session: AsyncSession = Depends(get_session),
) -> LedgerStatus:
    repo = LedgerRepository(session)
    return LedgerStatus.model_validate(await repo.require_ledger())


@router.get(
    "/balances",
    response_model=BalanceCheckResult,
    status_code=status.HTTP_200_OK,
    summary="Check live operator balances",
    description=(
        "Read the operator TON and jetton balances and compare them with "
        "the configured minimums. Cached for a short time unless "
        "fresh=true. Intended for polling by health checks."
    ),
)
async def get_balances(
    fresh: bool = FRESH_QUERY,
    _: str = Depends(get_api_key),
    balance_guard: BalanceGuard = Depends(get_balance_guard),
) -> BalanceCheckResult:
    """
    Check operator balances.

    Args:
        fresh: Skip the cache
        _: API key (from dependency)
        balance_guard: Balance guard

    Returns:
        BalanceCheckResult: Balances and alerts
    """
    return await balance_guard.get_balances(fresh=fresh)
