import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from corgi_rewards.api.router import api_router
from corgi_rewards.blockchain.balance import BalanceGuard
from corgi_rewards.blockchain.broadcaster import TransactionBroadcaster
from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.cache.redis import redis_client
from corgi_rewards.config import settings
from corgi_rewards.database import async_session, init_db
from corgi_rewards.exceptions import CustomException
from corgi_rewards.middleware import (
    setup_logging,
    setup_request_logging_middleware,
)
from corgi_rewards.rewards.coordinator import RewardDistributionCoordinator
from corgi_rewards.rewards.reconciler import TransactionReconciler


setup_logging(logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()

    # One chain client and one broadcaster per process, so every
    # distribution shares the same wallet sequence lock
    chain_client = TonChainClient(settings)
    balance_guard = BalanceGuard(chain_client, settings, cache=redis_client)
    broadcaster = TransactionBroadcaster(chain_client, settings)

    app.state.chain_client = chain_client
    app.state.balance_guard = balance_guard
    app.state.broadcaster = broadcaster
    app.state.coordinator = RewardDistributionCoordinator(
        async_session, balance_guard, broadcaster, settings
    )
    app.state.reconciler = TransactionReconciler(
        async_session, chain_client, settings
    )
    logger.info(
        "Reward pipeline ready on TON %s for jetton %s",
        settings.TON_NETWORK,
        settings.JETTON_MASTER_ADDRESS,
    )

    yield

    await chain_client.close()
    await redis_client.disconnect()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=(
            "API for confirming corgi sightings and paying their rewards "
            "as jetton transfers on the TON blockchain"
        ),
        version=settings.VERSION,
        openapi_url=(
            f"{settings.API_PREFIX}/openapi.json" if settings.DEBUG else None
        ),
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Set up CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_request_logging_middleware(
        app,
        exclude_paths=[
            "/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        ],
    )

    # Include API router
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # Add exception handlers
    @app.exception_handler(CustomException)
    async def custom_exception_handler(
        _request: Request, exc: CustomException
    ) -> JSONResponse:
        content = {"detail": exc.detail, "code": exc.code}
        transaction_id = getattr(exc, "transaction_id", None)
        if transaction_id is not None:
            content["transaction_id"] = transaction_id
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "corgi_rewards.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
    )
