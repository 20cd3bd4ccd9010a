import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from celery import shared_task

from corgi_rewards.blockchain.balance import BalanceGuard
from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.blockchain.errors import ChainError
from corgi_rewards.cache.redis import RedisClient
from corgi_rewards.config import settings
from corgi_rewards.database import async_session, engine
from corgi_rewards.rewards.reconciler import TransactionReconciler


logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(factory: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine in a fresh event loop owned by the task."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(factory())
    finally:
        # Pooled connections belong to this loop
        loop.run_until_complete(engine.dispose())
        loop.close()


@shared_task(
    bind=True,
    name="reconcile_transactions",
    autoretry_for=(ChainError,),
    max_retries=3,
    retry_backoff=30,
    queue="rewards",
)
def reconcile_transactions(self) -> dict[str, Any]:
    """
    Match broadcasting reward transfers with the chain.

    Returns:
        dict: Reconciliation counters
    """
    task_id = self.request.id or str(uuid.uuid4())
    logger.info("Starting reconciliation (task_id=%s)", task_id)

    async def reconcile() -> dict[str, Any]:
        chain_client = TonChainClient(settings)
        try:
            reconciler = TransactionReconciler(
                async_session, chain_client, settings
            )
            summary = await reconciler.reconcile()
        finally:
            await chain_client.close()
        return {"task_id": task_id, **summary.model_dump()}

    result = run_async(reconcile)
    logger.info("Reconciliation finished: %s", result)
    return result


@shared_task(
    bind=True,
    name="monitor_operator_balances",
    queue="rewards",
)
def monitor_operator_balances(self) -> dict[str, Any]:
    """
    Refresh the cached operator balances and report alerts.

    Returns:
        dict: Balances and alerts
    """
    task_id = self.request.id or str(uuid.uuid4())

    async def monitor() -> dict[str, Any]:
        chain_client = TonChainClient(settings)
        cache = RedisClient(settings)
        try:
            guard = BalanceGuard(chain_client, settings, cache=cache)
            result = await guard.get_balances(fresh=True)
        finally:
            await chain_client.close()
            await cache.disconnect()
        return {
            "task_id": task_id,
            "healthy": result.healthy,
            **result.model_dump(mode="json"),
        }

    result = run_async(monitor)
    if not result["healthy"]:
        logger.warning(
            "Operator balances need attention: %d alert(s)",
            len(result["alerts"]),
        )
    return result
