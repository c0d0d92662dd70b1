from typing import Optional

import httpx
from celery import shared_task
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from celebrations.core.config import settings
from celebrations.db.session import SessionLocal
from . import repository
from .actions import build_skip_replies, skip_occurrence
from .dispatcher import DeliveryDispatcher
from .errors import GatewayAuthenticationError, GatewayTransportError, TokenAcquisitionError
from .gateway import GatewayClient, TokenProvider, TrustedServiceUrls
from .outbound_queue import OutboundQueue
from .scheduler import OccurrenceScheduler
from .schemas import DeliveryStatus, OutboundMessage

logger = get_task_logger(__name__)

RETRYABLE_ERRORS = (GatewayTransportError, GatewayAuthenticationError, TokenAcquisitionError)

_http_client: Optional[httpx.Client] = None
_token_provider: Optional[TokenProvider] = None


def _http() -> httpx.Client:
    global _http_client
    if _http_client is None:
        _http_client = httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
    return _http_client


def _tokens() -> TokenProvider:
    global _token_provider
    if _token_provider is None:
        _token_provider = TokenProvider(_http(), settings.MICROSOFT_APP_ID, settings.MICROSOFT_APP_PASSWORD)
    return _token_provider


def build_gateway(trusted_urls: TrustedServiceUrls) -> GatewayClient:
    return GatewayClient(_http(), _tokens(), trusted_urls)


@shared_task(name="celebrations.preview_pass")
def preview_pass_task() -> int:
    """Create upcoming occurrences and send owners their previews."""
    db: Session = SessionLocal()
    try:
        return OccurrenceScheduler(db, OutboundQueue()).run_preview_pass()
    finally:
        db.close()


@shared_task(name="celebrations.delivery_pass")
def delivery_pass_task() -> int:
    """Enqueue celebration messages for due occurrences."""
    db: Session = SessionLocal()
    try:
        return OccurrenceScheduler(db, OutboundQueue()).run_delivery_pass()
    finally:
        db.close()


@shared_task(name="celebrations.reconcile_delivering")
def reconcile_delivering_task() -> int:
    db: Session = SessionLocal()
    try:
        return OccurrenceScheduler(db, OutboundQueue()).run_reconciliation_sweep()
    finally:
        db.close()


@shared_task(
    bind=True,
    name="celebrations.send_to_conversation",
    max_retries=settings.SEND_TASK_MAX_RETRIES,
    default_retry_delay=settings.SEND_TASK_RETRY_DELAY_SECONDS,
)
def send_to_conversation_task(self, payload: dict) -> str:
    """
    Consume the send-to-conversation queue.

    A failed task is acked, so gateway errors that outlasted the HTTP retry
    policy put the message back on the queue through ``self.retry`` until
    ``SEND_TASK_MAX_RETRIES`` is used up.
    """
    message = OutboundMessage.model_validate(payload)
    # Credentials only go to the service URL this message was addressed to
    trusted_urls = TrustedServiceUrls({message.service_url})
    db: Session = SessionLocal()
    try:
        status = DeliveryDispatcher(db, build_gateway(trusted_urls)).deliver(message)
        if status != DeliveryStatus.SUCCEEDED:
            logger.warning(f"[Dispatch] Message to {message.conversation_id} ended with {status.value}")
        return status.value
    except RETRYABLE_ERRORS as e:
        logger.warning(
            f"⚠️  [Dispatch] Message to {message.conversation_id} failed ({e}), "
            f"retry {self.request.retries + 1}/{self.max_retries}"
        )
        raise self.retry(exc=e)
    except Exception:
        logger.exception(f"❌ [Dispatch] Message to {message.conversation_id} could not be delivered")
        raise
    finally:
        db.close()


@shared_task(name="celebrations.skip_occurrence")
def skip_occurrence_task(occurrence_id: str, owner_aad_object_id: str, preview_activity_id: str) -> bool:
    """Owner pressed Skip on a preview card."""
    db: Session = SessionLocal()
    try:
        occurrence = skip_occurrence(db, occurrence_id, owner_aad_object_id)
        if occurrence is None:
            return False

        event = repository.get_event(db, occurrence.event_id)
        user = repository.get_user(db, owner_aad_object_id)
        if event is None or user is None:
            logger.warning(f"[Skip] Occurrence {occurrence_id} skipped but its event or owner is gone, no reply sent")
            return True

        updated_preview, confirmation = build_skip_replies(
            event, occurrence, user, preview_activity_id, bot_id=settings.MICROSOFT_APP_ID
        )
        gateway = build_gateway(TrustedServiceUrls({user.service_url}))
        gateway.update_activity(updated_preview)
        gateway.send_to_conversation(confirmation)
        return True
    finally:
        db.close()
