import uuid
from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class Settled(BaseModel):
    """Transfer submitted; the ledger is debited."""

    outcome: Literal["settled"] = "settled"
    transaction_id: uuid.UUID
    placeholder_hash: str
    amount: int
    sequence_number: int


class InsufficientFunds(BaseModel):
    """Pre-flight check failed; nothing was mutated."""

    outcome: Literal["insufficient_funds"] = "insufficient_funds"
    reason: str


class RetryableFailure(BaseModel):
    """Transfer was not sent and local state was restored."""

    outcome: Literal["retryable_failure"] = "retryable_failure"
    reason: str
    transaction_id: Optional[uuid.UUID] = None


class PermanentFailure(BaseModel):
    """Transfer may be in flight; flagged for manual remediation."""

    outcome: Literal["permanent_failure"] = "permanent_failure"
    transaction_id: uuid.UUID
    reason: str


DistributionOutcome = Union[
    Settled, InsufficientFunds, RetryableFailure, PermanentFailure
]


class DistributeRewardRequest(BaseModel):
    """Request model for distributing a sighting reward."""

    recipient_address: str = Field(
        ..., min_length=1, description="Recipient TON wallet address"
    )
    amount: Optional[int] = Field(
        None,
        gt=0,
        description=(
            "Reward in jetton smallest units. "
            "Derived from the corgi count when omitted."
        ),
    )


class TransactionRead(BaseModel):
    """Transaction as returned by the API."""

    id: uuid.UUID
    query_id: int
    transaction_hash: Optional[str] = None
    from_wallet: str
    to_wallet: str
    amount: int
    transaction_type: str
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    status: str
    sequence_number: Optional[int] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    broadcast_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReconcileSummary(BaseModel):
    """Result of one reconciliation pass."""

    scanned: int = 0
    completed: int = 0
    failed: int = 0
    expired: int = 0
    pending: int = 0
