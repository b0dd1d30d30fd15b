"""
WALI-OS Celery Application Configuration

Runs the periodic maintenance jobs (the daily chat-history cleanup) on a
Redis-backed worker.
"""

import logging
from datetime import timedelta
from typing import Any

from celery import Celery
from celery.signals import task_failure, task_success
from kombu import Exchange, Queue

from walios.core.config import settings

logger = logging.getLogger(__name__)


default_exchange = Exchange("default", type="direct")

TASK_QUEUES = (
    Queue("maintenance", exchange=default_exchange, routing_key="maintenance"),
)

TASK_ROUTES = {
    "walios.tasks.cleanup.cleanup_chat_history": {"queue": "maintenance"},
}


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Configured Celery application instance.
    """
    app = Celery(
        "walios",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=["walios.tasks.cleanup"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",

        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="maintenance",
        task_default_exchange="default",
        task_default_routing_key="maintenance",

        task_soft_time_limit=300,
        task_time_limit=600,

        worker_concurrency=2,
        worker_prefetch_multiplier=1,

        result_expires=86400,
        task_track_started=True,
        task_acks_late=True,

        timezone="UTC",
        enable_utc=True,

        broker_connection_retry_on_startup=True,

        beat_schedule={
            "chat-history-cleanup": {
                "task": "walios.tasks.cleanup.cleanup_chat_history",
                "schedule": timedelta(hours=24),
                "kwargs": {"hours_old": settings.chat_cleanup_hours_old},
                "options": {"queue": "maintenance"},
            },
        },
    )

    return app


celery_app = create_celery_app()


@task_success.connect
def on_task_success(sender: Any = None, result: Any = None, **kwargs: Any) -> None:
    logger.info(f"Task {sender.name} succeeded")


@task_failure.connect
def on_task_failure(
    sender: Any = None,
    task_id: str = None,
    exception: Exception = None,
    **kwargs: Any,
) -> None:
    logger.error(f"Task {sender.name}[{task_id}] failed: {exception}")
