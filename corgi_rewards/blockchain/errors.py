"""
Classification of chain client failures.

Raw errors from pytoniq, aiohttp and asyncio are turned into a
``ChainError`` with a closed ``ErrorClassification`` at the point where
the client receives them, so callers only ever branch on the enum.
"""

import asyncio
import re
from enum import Enum
from typing import Optional

import aiohttp

from corgi_rewards.exceptions import BlockchainError


class ErrorClassification(str, Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


NON_RETRYABLE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"invalid address",
        r"invalid amount",
        r"invalid parameter",
        r"invalid argument",
        r"insufficient balance",
        r"insufficient fund",
        r"not enough ton",
        r"contract error",
        r"contract not found",
        r"already processed",
        r"duplicate transaction",
        r"signature",
    )
]

RETRYABLE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"timeout",
        r"timed out",
        r"econnrefused",
        r"econnreset",
        r"etimedout",
        r"network",
        r"connection",
        r"rate limit",
        r"\b429\b",
        r"temporarily unavailable",
        r"service unavailable",
        r"overloaded",
        r"\b5\d\d\b",
    )
]

RETRYABLE_TYPES = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    aiohttp.ClientError,
)


class ChainError(BlockchainError):
    """Classified failure raised by the chain client."""

    def __init__(
        self,
        detail: str,
        classification: ErrorClassification,
        submitted: bool = False,
    ):
        super().__init__(detail=detail)
        self.classification = classification
        # True once a signed message may have reached the network
        self.submitted = submitted

    @property
    def retryable(self) -> bool:
        return self.classification is ErrorClassification.RETRYABLE

    def __str__(self) -> str:
        return str(self.detail)


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Classify an error as retryable or non-retryable.

    Already classified errors keep their classification. Otherwise the
    decision depends only on the error type and message. Non-retryable
    message patterns win over retryable ones and unknown errors are
    treated as non-retryable.

    Args:
        error: Error raised by a chain operation

    Returns:
        ErrorClassification: Classification of the error
    """
    if isinstance(error, ChainError):
        return error.classification

    message = str(error)
    if any(pattern.search(message) for pattern in NON_RETRYABLE_PATTERNS):
        return ErrorClassification.NON_RETRYABLE

    if isinstance(error, RETRYABLE_TYPES):
        return ErrorClassification.RETRYABLE

    if any(pattern.search(message) for pattern in RETRYABLE_PATTERNS):
        return ErrorClassification.RETRYABLE

    return ErrorClassification.NON_RETRYABLE


def to_chain_error(
    error: BaseException,
    operation: str,
    submitted: bool = False,
) -> ChainError:
    """Wrap a raw error into a classified ``ChainError``."""
    if isinstance(error, ChainError):
        return error

    message = str(error) or type(error).__name__
    return ChainError(
        detail=f"{operation} failed: {message}",
        classification=classify_error(error),
        submitted=submitted,
    )


def describe(error: Optional[BaseException]) -> str:
    """Short human readable description used for audit columns."""
    if error is None:
        return ""
    return str(error) or type(error).__name__
