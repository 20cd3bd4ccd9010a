from unittest.mock import MagicMock, patch

import pytest

from corgi_rewards.api.dependencies import (
    get_api_key,
    get_balance_guard,
    get_chain_client,
    get_coordinator,
    get_reconciler,
)
from corgi_rewards.exceptions import AuthenticationError


class TestApiDependencies:
    """Tests for the API dependencies."""

    @pytest.mark.asyncio
    async def test_get_api_key_valid(self):
        """Test successful API key validation."""
        # Arrange
        valid_token = "correct_token"

        # Patch settings to return our test token
        with patch("corgi_rewards.api.dependencies.settings") as mock_settings:
            mock_settings.API_AUTH_TOKEN.get_secret_value.return_value = (
                valid_token
            )

            # Act
            result = await get_api_key(f"Bearer {valid_token}")

            # Assert
            assert result == valid_token

    @pytest.mark.asyncio
    async def test_get_api_key_without_bearer_prefix(self):
        """Test API key validation without 'Bearer' prefix."""
        # Arrange
        valid_token = "correct_token"

        # Patch settings to return our test token
        with patch("corgi_rewards.api.dependencies.settings") as mock_settings:
            mock_settings.API_AUTH_TOKEN.get_secret_value.return_value = (
                valid_token
            )

            # Act
            result = await get_api_key(valid_token)

            # Assert
            assert result == valid_token

    @pytest.mark.asyncio
    async def test_get_api_key_invalid(self):
        """Test invalid API key validation."""
        # Arrange
        valid_token = "correct_token"
        invalid_token = "wrong_token"

        # Patch settings to return our test token
        with patch("corgi_rewards.api.dependencies.settings") as mock_settings:
            mock_settings.API_AUTH_TOKEN.get_secret_value.return_value = (
                valid_token
            )

            # Act & Assert
            with pytest.raises(AuthenticationError) as exc_info:
                await get_api_key(f"Bearer {invalid_token}")

            assert "Invalid API key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_api_key_missing(self):
        """Test missing API key."""
        # Act & Assert
        with pytest.raises(AuthenticationError) as exc_info:
            await get_api_key(None)

        assert "API key is missing" in str(exc_info.value)

    def test_components_come_from_app_state(self):
        """Test pipeline components are read from the application state."""
        # Arrange
        request = MagicMock()

        # Act & Assert
        assert get_chain_client(request) is request.app.state.chain_client
        assert get_balance_guard(request) is request.app.state.balance_guard
        assert get_coordinator(request) is request.app.state.coordinator
        assert get_reconciler(request) is request.app.state.reconciler
