"""
Blockchain module for paying jetton rewards on TON.
"""

from corgi_rewards.blockchain.models import (
    CorgiSighting,
    OperatorLedger,
    Transaction,
)
from corgi_rewards.blockchain.schemas import (
    BalanceCheckResult,
    BroadcastResult,
    JettonTransferParams,
)
