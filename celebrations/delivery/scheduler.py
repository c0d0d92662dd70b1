"""
Time-triggered passes of the celebration pipeline.

- Preview pass (daily): creates this year's occurrence of every event due in
  the next few days and sends the owner a preview with a Skip action.
- Delivery pass (hourly): picks up due occurrences still in Initial state,
  groups and batches them into channel messages, enqueues the messages and
  locks the occurrences in Delivering.
- Reconciliation sweep (hourly): returns occurrences stuck in Delivering to
  Initial so a crashed delivery is retried instead of skipped for the year.

Every pass is safe to re-run; occurrences are processed one at a time.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from celebrations.core.config import settings
from celebrations.utils.timezone import to_utc_naive, utcnow
from . import repository
from .batching import NotificationBatcher
from .cards import build_preview_attachment
from .errors import CelebrationsError, OwnerNotFoundError
from .grouping import NotificationGrouper
from .metrics import (
    delivery_passes_total,
    messages_enqueued_total,
    occurrences_reconciled_total,
    preview_passes_total,
    previews_enqueued_total,
)
from .models import Event, Occurrence, User
from .outbound_queue import OutboundQueue
from .schemas import ConversationType, OutboundMessage

logger = logging.getLogger(__name__)

PREVIEW_MESSAGE_FORMAT = (
    "Hi {name}, you have an upcoming event in the next {days} days. "
    "If you take no action, I will post this celebration."
)


class OccurrenceScheduler:
    def __init__(
        self,
        db: Session,
        queue: OutboundQueue,
        grouper: Optional[NotificationGrouper] = None,
        batcher: Optional[NotificationBatcher] = None,
        horizon_days: Optional[int] = None,
        stale_after_hours: Optional[int] = None,
        bot_id: Optional[str] = None,
    ):
        self.db = db
        self.queue = queue
        self.bot_id = bot_id if bot_id is not None else settings.MICROSOFT_APP_ID
        self.grouper = grouper or NotificationGrouper(db)
        self.batcher = batcher or NotificationBatcher(bot_id=self.bot_id)
        self.horizon_days = horizon_days or settings.PREVIEW_HORIZON_DAYS
        self.stale_after_hours = stale_after_hours or settings.DELIVERING_STALE_AFTER_HOURS

    # --- Preview pass ---

    def run_preview_pass(self, now: Optional[datetime] = None) -> int:
        """Returns the number of previews enqueued."""
        now = now or utcnow()
        logger.info(f"🕒 [Preview] Pass started at {now.isoformat()}")
        preview_passes_total.inc()
        enqueued = 0
        try:
            events = repository.find_due_for_preview(self.db, now, self.horizon_days)
            logger.info(f"🧭 [Preview] Events due in the next {self.horizon_days} days: {len(events)}")
            for event in events:
                try:
                    if self._preview_event(event, now):
                        enqueued += 1
                except CelebrationsError as e:
                    logger.error(f"❌ [Preview] Event {event.id}: {e}")
        except Exception:
            logger.exception("❌ [Preview] Pass aborted")
        logger.info(f"✅ [Preview] Pass finished, {enqueued} previews enqueued")
        return enqueued

    def _preview_event(self, event: Event, now: datetime) -> bool:
        occurrence = repository.create_if_absent_for_year(self.db, event, now)
        if occurrence is None:
            # Already initialized this year
            return False

        user = repository.get_user(self.db, event.owner_aad_object_id)
        if user is None:
            raise OwnerNotFoundError(event.owner_aad_object_id)

        self.queue.send(self.build_preview_message(event, occurrence, user))
        previews_enqueued_total.inc()
        logger.info(f"➡️  [Preview] Occurrence {occurrence.id} created for event {event.id} on {occurrence.date.date()}")
        return True

    def build_preview_message(self, event: Event, occurrence: Occurrence, user: User) -> OutboundMessage:
        attachment = build_preview_attachment(
            event_id=event.id,
            title=event.title,
            message=event.message,
            image=event.image,
            occurrence_id=occurrence.id,
            owner_aad_object_id=occurrence.owner_aad_object_id,
            owner_name=user.name,
        )
        return OutboundMessage(
            service_url=user.service_url,
            conversation_id=user.conversation_id,
            conversation_type=ConversationType.PERSONAL,
            tenant_id=user.tenant_id,
            bot_id=self.bot_id,
            text=PREVIEW_MESSAGE_FORMAT.format(name=user.name, days=self.horizon_days),
            attachments=[attachment],
        )

    # --- Delivery pass ---

    def run_delivery_pass(self, now: Optional[datetime] = None) -> int:
        """
        Returns the number of messages enqueued.

        Messages are enqueued before the occurrences are moved to Delivering. A
        failure part way leaves earlier occurrences in Delivering; the
        reconciliation sweep takes care of them.
        """
        now = now or utcnow()
        logger.info(f"🕒 [Delivery] Pass started at {now.isoformat()}")
        delivery_passes_total.inc()
        enqueued = 0
        try:
            occurrences = repository.find_due_in_initial_state(self.db, now)
            logger.info(f"🧭 [Delivery] Due occurrences: {len(occurrences)}")
            if not occurrences:
                return 0

            grouped = self.grouper.group(occurrences)
            messages = self.batcher.build_messages(grouped)

            for message in messages:
                self.queue.send(message)
                enqueued += 1
                messages_enqueued_total.inc()

            self._lock_occurrences(occurrences, messages)
        except Exception:
            logger.exception("❌ [Delivery] Pass aborted")
        logger.info(f"✅ [Delivery] Pass finished, {enqueued} messages enqueued")
        return enqueued

    def _lock_occurrences(self, occurrences: List[Occurrence], messages: List[OutboundMessage]) -> None:
        per_occurrence = Counter(oid for message in messages for oid in message.occurrence_ids)
        for occurrence in occurrences:
            count = per_occurrence.get(occurrence.id, 0)
            if not repository.set_delivering(self.db, occurrence.id, count):
                logger.warning(f"⚠️  [Delivery] Occurrence {occurrence.id} is gone or no longer Initial, not locked")
            elif count == 0:
                logger.info(f"[Delivery] Occurrence {occurrence.id} has no reachable audience")

    # --- Reconciliation ---

    def run_reconciliation_sweep(self, now: Optional[datetime] = None) -> int:
        """Returns the number of occurrences reset to Initial."""
        now = to_utc_naive(now or utcnow())
        older_than = now - timedelta(hours=self.stale_after_hours)
        reset = 0
        for occurrence in repository.find_stale_delivering(self.db, older_than):
            if repository.reset_to_initial(self.db, occurrence.id):
                reset += 1
                occurrences_reconciled_total.inc()
                logger.warning(f"⚠️  [Reconcile] Occurrence {occurrence.id} was stuck in Delivering, reset to Initial")
        return reset
