import asyncio

import aiohttp
import pytest

from corgi_rewards.blockchain.errors import (
    ChainError,
    ErrorClassification,
    classify_error,
    describe,
    to_chain_error,
)


RETRYABLE = ErrorClassification.RETRYABLE
NON_RETRYABLE = ErrorClassification.NON_RETRYABLE


class TestClassifyError:
    """Tests for chain error classification."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (asyncio.TimeoutError(), RETRYABLE),
            (ConnectionResetError("peer reset"), RETRYABLE),
            (aiohttp.ClientConnectionError("boom"), RETRYABLE),
            (RuntimeError("ECONNREFUSED 127.0.0.1"), RETRYABLE),
            (RuntimeError("HTTP 503 Service Unavailable"), RETRYABLE),
            (RuntimeError("rate limit exceeded (429)"), RETRYABLE),
            (ValueError("invalid address"), NON_RETRYABLE),
            (RuntimeError("Insufficient balance for transfer"), NON_RETRYABLE),
            (RuntimeError("bad signature"), NON_RETRYABLE),
            (RuntimeError("something odd"), NON_RETRYABLE),
        ],
    )
    def test_classify_error(self, error, expected):
        """Test errors are classified by type and message."""
        # Act & Assert
        assert classify_error(error) is expected

    def test_non_retryable_message_wins(self):
        """Test a non-retryable message beats a retryable type."""
        # Arrange
        error = ConnectionError("contract error during connection")

        # Act & Assert
        assert classify_error(error) is NON_RETRYABLE

    def test_classified_error_kept(self):
        """Test an existing classification is not re-evaluated."""
        # Arrange
        error = ChainError("timeout", NON_RETRYABLE)

        # Act & Assert
        assert classify_error(error) is NON_RETRYABLE
        assert to_chain_error(error, "Reading seqno") is error

    def test_to_chain_error(self):
        """Test raw errors are wrapped with the operation name."""
        # Act
        error = to_chain_error(
            asyncio.TimeoutError(), "Submitting transfer", submitted=True
        )

        # Assert
        assert isinstance(error, ChainError)
        assert error.retryable
        assert error.submitted
        assert str(error) == "Submitting transfer failed: TimeoutError"
        assert error.status_code == 500

    def test_describe(self):
        """Test audit descriptions."""
        # Assert
        assert describe(None) == ""
        assert describe(ValueError("bad")) == "bad"
        assert describe(KeyError()) == "KeyError"
