"""
Delivers queued outbound messages through the gateway.

A message with @mentions needs a new conversation first: the text and the
mentions open a channel thread, then the attachments are posted into it.

A channel message answered with 404 means the team's selected channel was
deleted. The team is pointed back at its General channel (persisted for all
future sends) and the message is sent there once more.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import repository
from .gateway import GatewayClient
from .metrics import channel_fallbacks_total, deliveries_total
from .schemas import DeliveryStatus, OutboundMessage

logger = logging.getLogger(__name__)


class DeliveryDispatcher:
    def __init__(self, db: Session, gateway: GatewayClient):
        self.db = db
        self.gateway = gateway

    def deliver(self, message: OutboundMessage) -> DeliveryStatus:
        original = message.model_copy(deep=True)

        status = self._send(message)
        if status == DeliveryStatus.NOT_FOUND and message.is_channel_message:
            status = self._retry_on_not_found(original)
            message.conversation_id = original.conversation_id

        deliveries_total.labels(status=status.value).inc()
        self._record(message, status)
        return status

    def _send(self, message: OutboundMessage) -> DeliveryStatus:
        if not message.mentions:
            return self.gateway.send_to_conversation(message)

        opening = OutboundMessage(
            type=message.type,
            service_url=message.service_url,
            conversation_id=message.conversation_id,
            conversation_type=message.conversation_type,
            tenant_id=message.tenant_id,
            bot_id=message.bot_id,
            text=message.text,
            mentions=message.mentions,
        )
        status, conversation_id = self.gateway.create_conversation(opening, message.conversation_id)
        if status != DeliveryStatus.SUCCEEDED:
            return status

        # Follow-up posts to the same message go to the new thread
        message.conversation_id = conversation_id
        message.text = None
        message.mentions = []
        return self.gateway.send_to_conversation(message)

    def _retry_on_not_found(self, message: OutboundMessage) -> DeliveryStatus:
        if not message.team_id:
            return DeliveryStatus.FAILED

        team = repository.reset_team_active_channel(self.db, message.team_id)
        if team is not None:
            channel_fallbacks_total.inc()
            logger.warning(
                f"⚠️  [Dispatch] Channel {message.conversation_id} of team {message.team_id} not found, "
                "messages now target the General channel"
            )

        message.conversation_id = message.team_id
        status = self._send(message)
        if status == DeliveryStatus.NOT_FOUND:
            return DeliveryStatus.FAILED
        return status

    def _record(self, message: OutboundMessage, status: DeliveryStatus) -> None:
        error: Optional[str] = None
        if status != DeliveryStatus.SUCCEEDED:
            error = f"Delivery to {message.conversation_id} ended with {status.value}"
        for occurrence_id in message.occurrence_ids:
            occurrence = repository.record_delivery_result(self.db, occurrence_id, status, error)
            if occurrence is None:
                logger.info(f"[Dispatch] Occurrence {occurrence_id} no longer exists, result not recorded")
