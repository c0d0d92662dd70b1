from celery import Celery
from celery.signals import setup_logging
from kombu import Exchange, Queue

from celebrations.core.config import settings
from celebrations.core.logging import configure_logging


celery_app = Celery(
    "celebrations",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND or None,
)

exchange = Exchange(settings.QUEUE_EXCHANGE, type="direct", durable=True)

celery_app.conf.update(
    # At-least-once: a message is acked only after the dispatcher returns
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.SCHEDULER_QUEUE,
    task_default_exchange=settings.QUEUE_EXCHANGE,
    task_default_routing_key=settings.SCHEDULER_ROUTING_KEY,
    include=["celebrations.delivery.tasks"],
    task_queues=(
        Queue(settings.SCHEDULER_QUEUE, exchange=exchange, routing_key=settings.SCHEDULER_ROUTING_KEY, durable=True),
        Queue(settings.SEND_TO_CONVERSATION_QUEUE, exchange=exchange, routing_key=settings.SEND_TO_CONVERSATION_ROUTING_KEY, durable=True),
    ),
)

# Celery Beat schedule for the time-triggered passes
celery_app.conf.beat_schedule = {
    "preview-pass": {
        "task": "celebrations.preview_pass",
        "schedule": settings.PREVIEW_INTERVAL_SECONDS,
    },
    "delivery-pass": {
        "task": "celebrations.delivery_pass",
        "schedule": settings.DELIVERY_INTERVAL_SECONDS,
    },
    "reconcile-delivering": {
        "task": "celebrations.reconcile_delivering",
        "schedule": settings.RECONCILE_INTERVAL_SECONDS,
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()
