import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime
from sqlmodel import Field, SQLModel

from corgi_rewards.constants import (
    RewardStatus,
    SightingStatus,
    TransactionStatus,
    TransactionType,
)
from corgi_rewards.utils import utcnow


def query_id_for(transaction_id: uuid.UUID) -> int:
    """Derive the TEP-74 query id of a transaction from its id."""
    # 63 bits so the value also fits a signed BIGINT column
    return transaction_id.int >> 65


class OperatorLedger(SQLModel, table=True):
    """Singleton bookkeeping row of the operator account."""

    __tablename__ = "operator_ledger"

    id: int = Field(default=1, primary_key=True)
    wallet_address: str
    # Amounts are integers in the token's smallest unit
    current_balance: int = Field(
        default=0, sa_column=Column(BigInteger, nullable=False)
    )
    total_distributed: int = Field(
        default=0, sa_column=Column(BigInteger, nullable=False)
    )
    last_transaction_hash: Optional[str] = Field(default=None)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class Transaction(SQLModel, table=True):
    """Model for reward and purchase transfers."""

    __tablename__ = "transactions"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )
    query_id: int = Field(
        sa_column=Column(BigInteger, nullable=False, unique=True, index=True)
    )
    transaction_hash: Optional[str] = Field(
        default=None, unique=True, index=True
    )
    from_wallet: str
    to_wallet: str
    amount: int = Field(sa_column=Column(BigInteger, nullable=False))
    transaction_type: str = Field(
        default=TransactionType.REWARD, index=True
    )
    related_entity_id: Optional[str] = Field(default=None, index=True)
    related_entity_type: Optional[str] = Field(default=None)
    status: str = Field(default=TransactionStatus.PENDING, index=True)
    sequence_number: Optional[int] = Field(default=None)
    failure_reason: Optional[str] = Field(default=None)
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )
    broadcast_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )


class CorgiSighting(SQLModel, table=True):
    """
    Triggering domain event.

    The table belongs to the sightings service; only the columns read or
    written by reward distribution are declared here.
    """

    __tablename__ = "corgi_sightings"

    id: Optional[int] = Field(default=None, primary_key=True)
    reporter_id: int = Field(index=True)
    buddy_id: int = Field(index=True)
    corgi_count: int
    status: str = Field(default=SightingStatus.PENDING, index=True)
    reward_status: str = Field(default=RewardStatus.PENDING)
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )
    responded_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    reward_distributed_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
