from fastapi import Request, Security
from fastapi.security import APIKeyHeader

from corgi_rewards.blockchain.balance import BalanceGuard
from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.config import settings
from corgi_rewards.exceptions import AuthenticationError
from corgi_rewards.rewards.coordinator import RewardDistributionCoordinator
from corgi_rewards.rewards.reconciler import TransactionReconciler


API_KEY_HEADER = APIKeyHeader(name="Authorization", auto_error=False)
API_KEY_SECURITY = Security(API_KEY_HEADER)


async def get_api_key(api_key_header: str = API_KEY_SECURITY) -> str:
    """Validate API key from header."""
    if not api_key_header:
        raise AuthenticationError(detail="API key is missing")

    # Check if the header has the format "Bearer {token}"
    if api_key_header.startswith("Bearer "):
        token = api_key_header.replace("Bearer ", "", 1)
    else:
        token = api_key_header

    # Validate the token - get the actual string value from SecretStr
    if token != settings.API_AUTH_TOKEN.get_secret_value():
        raise AuthenticationError(detail="Invalid API key")

    return token


# Components are built once in the application lifespan
def get_chain_client(request: Request) -> TonChainClient:
    return request.app.state.chain_client


def get_balance_guard(request: Request) -> BalanceGuard:
    return request.app.state.balance_guard


def get_coordinator(request: Request) -> RewardDistributionCoordinator:
    return request.app.state.coordinator


def get_reconciler(request: Request) -> TransactionReconciler:
    return request.app.state.reconciler
