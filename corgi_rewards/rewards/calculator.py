"""
Reward amount calculation.

One corgi spotted earns one coin, without multipliers.
"""

from typing import Optional

from corgi_rewards.config import settings
from corgi_rewards.constants import Jetton
from corgi_rewards.exceptions import ValidationError
from corgi_rewards.utils import format_units, to_smallest_units


def validate_corgi_count(corgi_count: int) -> int:
    if (
        isinstance(corgi_count, bool)
        or not isinstance(corgi_count, int)
        or not Jetton.MIN_CORGI_COUNT <= corgi_count <= Jetton.MAX_CORGI_COUNT
    ):
        raise ValidationError(
            f"Invalid corgi count: {corgi_count}. Must be an integer "
            f"between {Jetton.MIN_CORGI_COUNT} and {Jetton.MAX_CORGI_COUNT}."
        )
    return corgi_count


def calculate_reward_amount(
    corgi_count: int, decimals: Optional[int] = None
) -> int:
    """
    Calculate a sighting reward in jetton smallest units.

    Args:
        corgi_count: Number of corgis in the sighting (1..100)
        decimals: Jetton decimals (defaults to ``JETTON_DECIMALS``)

    Returns:
        int: ``corgi_count * 10**decimals``
    """
    coins = validate_corgi_count(corgi_count)
    return to_smallest_units(
        coins, settings.JETTON_DECIMALS if decimals is None else decimals
    )


def format_reward(amount: int, decimals: Optional[int] = None) -> str:
    return format_units(
        amount, settings.JETTON_DECIMALS if decimals is None else decimals
    )
