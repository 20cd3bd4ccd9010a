"""
Global constants for the application.
"""


class CacheKeys:
    """
    Cache key prefixes
    """

    OPERATOR_BALANCES = "operator_balances:{network}:{master}"


class ErrorCode:
    """
    Error codes
    """

    AUTHENTICATION_ERROR = "authentication_error"
    BLOCKCHAIN_ERROR = "blockchain_error"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CONFLICT = "conflict"
    RETRYABLE_CHAIN_ERROR = "retryable_chain_error"
    REWARD_INVESTIGATION = "reward_investigation"


class TransactionStatus:
    """
    Reward transaction lifecycle
    """

    PENDING = "pending"
    BROADCASTING = "broadcasting"
    COMPLETED = "completed"
    FAILED = "failed"

    # Allowed forward moves; everything else is rejected.
    TRANSITIONS = {
        PENDING: {BROADCASTING, FAILED},
        BROADCASTING: {COMPLETED, FAILED},
        COMPLETED: set(),
        FAILED: set(),
    }


class TransactionType:
    REWARD = "reward"
    PURCHASE = "purchase"


class SightingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DENIED = "denied"


class RewardStatus:
    PENDING = "pending"
    DISTRIBUTED = "distributed"
    FAILED = "failed"


class AlertType:
    LOW_TON_BALANCE = "low_ton_balance"
    LOW_JETTON_BALANCE = "low_jetton_balance"
    CRITICAL_BALANCE = "critical_balance"


class AlertSeverity:
    WARNING = "warning"
    CRITICAL = "critical"


class Jetton:
    """
    TEP-74 jetton constants
    """

    TRANSFER_OP = 0x0F8A7EA5
    MIN_CORGI_COUNT = 1
    MAX_CORGI_COUNT = 100


LITESERVER_CONFIG_URLS = {
    "mainnet": "https://ton.org/global.config.json",
    "testnet": "https://ton.org/testnet-global.config.json",
}

PLACEHOLDER_HASH_PREFIX = "pending-"
