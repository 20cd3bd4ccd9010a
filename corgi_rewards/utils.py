import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Union

from corgi_rewards.constants import PLACEHOLDER_HASH_PREFIX


logger = logging.getLogger(__name__)


def to_smallest_units(amount: Union[int, str, Decimal], decimals: int) -> int:
    """
    Convert a whole-token amount into smallest units.

    Args:
        amount: Token amount, e.g. ``"1.5"``
        decimals: Token decimal places

    Returns:
        int: Amount in smallest units

    Raises:
        ValueError: If the amount has more precision than ``decimals``
    """
    scaled = Decimal(str(amount)).scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"{amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def format_units(amount: int, decimals: int) -> str:
    """Format smallest units as a whole-token decimal string."""
    value = Decimal(amount).scaleb(-decimals).normalize()
    return f"{value:f}"


def placeholder_hash(sequence_number: int) -> str:
    """Provisional hash used until the real on-chain hash is known."""
    return f"{PLACEHOLDER_HASH_PREFIX}{int(time.time() * 1000)}-{sequence_number}"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values read back from stores without zone info."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
