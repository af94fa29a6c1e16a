"""
Celery application with a Redis broker.

Only completion notifications go through the queue; everything else in the
service runs inside the request.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from celery import Celery
from celery.signals import task_failure, task_retry
from kombu import Exchange, Queue

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class CeleryConfig:
    """Celery configuration settings."""

    # Broker settings
    broker_url: str = os.environ.get(
        "CELERY_BROKER_URL",
        os.environ.get("REDIS_URL", "redis://localhost:6379/1")
    )

    # Result backend
    result_backend: str = os.environ.get(
        "CELERY_RESULT_BACKEND",
        os.environ.get("REDIS_URL", "redis://localhost:6379/2")
    )

    # Serialization
    task_serializer: str = "json"
    result_serializer: str = "json"
    accept_content: List[str] = ["json"]

    timezone: str = "UTC"
    enable_utc: bool = True

    # Task settings
    task_acks_late: bool = True
    task_reject_on_worker_lost: bool = True
    task_default_queue: str = "default"
    task_always_eager: bool = os.environ.get("CELERY_TASK_ALWAYS_EAGER", "false").lower() == "true"

    # Worker settings
    worker_prefetch_multiplier: int = 1
    worker_concurrency: int = int(os.environ.get("CELERY_CONCURRENCY", "4"))

    result_expires: int = 3600  # 1 hour

    # Task execution limits
    task_soft_time_limit: int = 120
    task_time_limit: int = 300


# Dead-lettered notifications are kept for inspection rather than dropped
default_exchange = Exchange("default", type="direct")
dlq_exchange = Exchange("dlq", type="direct")

CELERY_QUEUES = [
    Queue("default", default_exchange, routing_key="default"),
    Queue(
        "notifications",
        default_exchange,
        routing_key="notifications",
        queue_arguments={
            "x-dead-letter-exchange": "dlq",
            "x-dead-letter-routing-key": "dlq.notifications",
        },
    ),
    Queue("dlq.notifications", dlq_exchange, routing_key="dlq.notifications"),
]

CELERY_TASK_ROUTES: Dict[str, Any] = {
    "tasks.send_completion_notification": {"queue": "notifications"},
}

TASK_MODULES: List[str] = [
    "esign_compliance.tasks.notification_tasks",
]


# =============================================================================
# Celery Application Factory
# =============================================================================

def create_celery_app(name: str = "esign_compliance", config: Optional[CeleryConfig] = None) -> Celery:
    """Create and configure the Celery application."""
    config = config or CeleryConfig()

    app = Celery(name)
    app.conf.update(
        broker_url=config.broker_url,
        result_backend=config.result_backend,
        task_serializer=config.task_serializer,
        result_serializer=config.result_serializer,
        accept_content=config.accept_content,
        timezone=config.timezone,
        enable_utc=config.enable_utc,
        task_acks_late=config.task_acks_late,
        task_reject_on_worker_lost=config.task_reject_on_worker_lost,
        task_default_queue=config.task_default_queue,
        task_always_eager=config.task_always_eager,
        worker_prefetch_multiplier=config.worker_prefetch_multiplier,
        worker_concurrency=config.worker_concurrency,
        result_expires=config.result_expires,
        task_soft_time_limit=config.task_soft_time_limit,
        task_time_limit=config.task_time_limit,
        task_queues=CELERY_QUEUES,
        task_routes=CELERY_TASK_ROUTES,
    )
    app.autodiscover_tasks(TASK_MODULES)

    logger.info(f"Celery app '{name}' configured with broker: {config.broker_url}")
    return app


@task_failure.connect
def handle_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    logger.error(f"Task {sender.name}[{task_id}] failed: {exception}")


@task_retry.connect
def handle_task_retry(sender=None, reason=None, **kwargs):
    logger.warning(f"Task {sender.name} retrying: {reason}")


celery_app = create_celery_app()
