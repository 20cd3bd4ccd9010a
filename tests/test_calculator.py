from decimal import Decimal

import pytest

from corgi_rewards.exceptions import ValidationError
from corgi_rewards.rewards.calculator import (
    calculate_reward_amount,
    format_reward,
    validate_corgi_count,
)
from corgi_rewards.utils import format_units, to_smallest_units


class TestRewardCalculator:
    """Tests for reward amount calculation."""

    def test_one_coin_per_corgi(self):
        """Test the reward scales linearly with the corgi count."""
        # Act & Assert
        assert calculate_reward_amount(1, decimals=9) == 10**9
        assert calculate_reward_amount(3, decimals=9) == 3 * 10**9
        assert calculate_reward_amount(100, decimals=6) == 100 * 10**6

    @pytest.mark.parametrize("corgi_count", [0, -1, 101, True, 2.5, "3"])
    def test_invalid_corgi_count(self, corgi_count):
        """Test counts outside 1..100 or of the wrong type are rejected."""
        # Act & Assert
        with pytest.raises(ValidationError):
            validate_corgi_count(corgi_count)

    def test_format_reward(self):
        """Test rewards are rendered in whole jettons."""
        # Act & Assert
        assert format_reward(1_500_000_000, decimals=9) == "1.5"


class TestUnits:
    """Tests for unit conversion helpers."""

    def test_to_smallest_units(self):
        """Test decimal amounts are scaled exactly."""
        # Act & Assert
        assert to_smallest_units("1.5", 9) == 1_500_000_000
        assert to_smallest_units(Decimal("0.000000001"), 9) == 1
        assert to_smallest_units(7, 0) == 7

    def test_to_smallest_units_too_precise(self):
        """Test sub-unit precision is rejected."""
        # Act & Assert
        with pytest.raises(ValueError):
            to_smallest_units("0.0000000001", 9)

    def test_format_units(self):
        """Test formatting drops trailing zeros."""
        # Act & Assert
        assert format_units(10**9, 9) == "1"
        assert format_units(1, 9) == "0.000000001"
        assert format_units(0, 9) == "0"
