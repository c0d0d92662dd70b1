import logging
from typing import Optional

from celery import Celery

from celebrations.core.config import settings
from .schemas import OutboundMessage

logger = logging.getLogger(__name__)

SEND_TO_CONVERSATION_TASK = "celebrations.send_to_conversation"


class OutboundQueue:
    """Producer side of the send-to-conversation queue."""

    def __init__(self, app: Optional[Celery] = None):
        if app is None:
            from .celery_app import celery_app as app
        self.app = app

    def send(self, message: OutboundMessage) -> None:
        self.app.send_task(
            SEND_TO_CONVERSATION_TASK,
            args=[message.model_dump(mode="json")],
            queue=settings.SEND_TO_CONVERSATION_QUEUE,
            routing_key=settings.SEND_TO_CONVERSATION_ROUTING_KEY,
        )
        logger.debug(f"[Queue] Enqueued message for conversation {message.conversation_id}")
