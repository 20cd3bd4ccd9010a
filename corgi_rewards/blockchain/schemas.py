from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from corgi_rewards.utils import utcnow


class JettonTransferParams(BaseModel):
    """Jetton transfer parameters."""

    destination: str
    amount: int = Field(..., gt=0)
    query_id: int = Field(..., ge=0, lt=2**64)
    forward_amount: int = Field(default=1, ge=0)


class BroadcastResult(BaseModel):
    """Result of a submitted transfer."""

    transaction_hash: str  # placeholder until reconciled
    sequence_number: int
    from_address: str
    to_address: str
    amount: int
    timestamp: datetime
    valid_until: Optional[int] = None  # unix time the message expires


class SequenceCheck(BaseModel):
    """Result of re-reading the operator sequence number."""

    current_sequence_number: int
    changed: bool


class OnChainTransfer(BaseModel):
    """Outgoing operator transfer observed on chain."""

    transaction_hash: str
    query_id: int
    success: bool
    utime: int


class BalanceAlert(BaseModel):
    """Operator balance alert."""

    type: str
    severity: str
    message: str
    current_balance: str
    threshold: str


class BalanceCheckResult(BaseModel):
    """Live operator balances compared with configured minimums."""

    ton_balance: Optional[int] = None
    jetton_balance: Optional[int] = None
    ton_ok: bool = False
    jetton_ok: bool = False
    alerts: list[BalanceAlert] = Field(default_factory=list)
    cached: bool = False
    checked_at: datetime = Field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        return self.ton_ok and self.jetton_ok


class AffordabilityResult(BaseModel):
    """Whether one transfer can be paid for."""

    can_afford: bool
    reason: Optional[str] = None
    ton_balance: Optional[int] = None
    jetton_balance: Optional[int] = None


class LedgerStatus(BaseModel):
    """Operator ledger as returned by the API."""

    wallet_address: str
    current_balance: int
    total_distributed: int
    last_transaction_hash: Optional[str] = None
    updated_at: datetime

    model_config = {"from_attributes": True}
