# pylint: disable=unused-import
import logging
from pathlib import Path

from celery import Celery
from dotenv import load_dotenv

from corgi_rewards.config import settings


logger = logging.getLogger(__name__)
env_path = Path(".") / ".env"
load_dotenv(dotenv_path=env_path)

logger.info(
    "Configuring Celery with Redis at %s:%s",
    settings.REDIS_HOST,
    settings.REDIS_PORT,
)

celery_app = Celery(
    "corgi_rewards",
    broker=str(settings.REDIS_URL),
    backend=str(settings.REDIS_URL),
)

# Configure Celery
celery_app.conf.update(
    broker_transport="redis",
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60 * 5,  # 5 minutes
    worker_hijack_root_logger=False,
    broker_connection_retry=True,
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_transport_options={
        "visibility_timeout": 3600,  # 1 hour
    },
    task_default_queue="rewards",
    beat_schedule={
        "reconcile-transactions": {
            "task": "reconcile_transactions",
            "schedule": float(settings.RECONCILE_INTERVAL),
        },
        "monitor-operator-balances": {
            "task": "monitor_operator_balances",
            "schedule": float(settings.BALANCE_MONITOR_INTERVAL),
        },
    },
)

# Register tasks
from corgi_rewards.tasks import reward_tasks  # noqa: E402,F401


logger.info("Celery worker initialized with tasks")
