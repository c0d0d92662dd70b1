"""
Turns each team's notifications into outbound channel messages.

Notifications are cut into consecutive batches of ``BATCH_SIZE``. A batch of
up to ``MERGE_THRESHOLD`` notifications is posted as one message per event so
each celebration gets its own thread; a bigger batch is merged into a single
carousel message so a busy day does not flood the channel.
"""
from typing import Callable, Dict, Iterable, List, Optional

from .cards import build_event_attachment
from .schemas import ConversationType, Mention, Notification, OutboundMessage, TeamTarget

BATCH_SIZE = 6
MERGE_THRESHOLD = 3

EVENT_MESSAGE_FORMAT = "<at>{owner}</at> is celebrating {title}"
MERGED_MESSAGE_FORMAT = (
    "Stop the presses! Today {all_but_last} and {last}. "
    "That's a lot of merrymaking for one day, pace yourselves!"
)
MERGED_SUMMARY = "We're celebrating multiple events today!"
CAROUSEL_LAYOUT = "carousel"


def partition(notifications: List[Notification], size: int = BATCH_SIZE) -> List[List[Notification]]:
    """Consecutive fixed-size batches; the last one may be shorter."""
    return [notifications[i:i + size] for i in range(0, len(notifications), size)]


def event_message(notification: Notification) -> str:
    return EVENT_MESSAGE_FORMAT.format(owner=notification.owner_display_name, title=notification.event_title)


def merged_message(notifications: List[Notification]) -> str:
    all_but_last = ", ".join(event_message(n) for n in notifications[:-1])
    return MERGED_MESSAGE_FORMAT.format(all_but_last=all_but_last, last=event_message(notifications[-1]))


def mention_for(notification: Notification) -> Optional[Mention]:
    if not notification.owner_teams_id:
        return None
    return Mention(id=notification.owner_teams_id, name=notification.owner_display_name or "")


class NotificationBatcher:
    def __init__(
        self,
        bot_id: Optional[str] = None,
        render: Callable[[Notification], Dict] = build_event_attachment,
        batch_size: int = BATCH_SIZE,
        merge_threshold: int = MERGE_THRESHOLD,
    ):
        self.bot_id = bot_id
        self.render = render
        self.batch_size = batch_size
        self.merge_threshold = merge_threshold

    def build_messages(self, grouped: Dict[TeamTarget, List[Notification]]) -> List[OutboundMessage]:
        messages: List[OutboundMessage] = []
        for team, notifications in grouped.items():
            messages.extend(self.build_team_messages(team, notifications))
        return messages

    def build_team_messages(self, team: TeamTarget, notifications: Iterable[Notification]) -> List[OutboundMessage]:
        messages: List[OutboundMessage] = []
        for batch in partition(list(notifications), self.batch_size):
            if len(batch) <= self.merge_threshold:
                messages.extend(self._individual_message(team, n) for n in batch)
            else:
                messages.append(self._merged_message(team, batch))
        return messages

    def _base_message(self, team: TeamTarget) -> OutboundMessage:
        return OutboundMessage(
            service_url=team.service_url,
            conversation_id=team.message_target_channel,
            conversation_type=ConversationType.CHANNEL,
            team_id=team.team_id,
            tenant_id=team.tenant_id,
            bot_id=self.bot_id,
            attachment_layout=CAROUSEL_LAYOUT,
        )

    def _individual_message(self, team: TeamTarget, notification: Notification) -> OutboundMessage:
        message = self._base_message(team)
        message.text = event_message(notification)
        message.attachments = [self.render(notification)]
        mention = mention_for(notification)
        message.mentions = [mention] if mention else []
        message.occurrence_ids = [notification.occurrence_id]
        return message

    def _merged_message(self, team: TeamTarget, batch: List[Notification]) -> OutboundMessage:
        message = self._base_message(team)
        message.text = merged_message(batch)
        message.summary = MERGED_SUMMARY
        message.attachments = [self.render(n) for n in batch]

        mentions: List[Mention] = []
        seen = set()
        for notification in batch:
            mention = mention_for(notification)
            if mention and mention.id not in seen:
                seen.add(mention.id)
                mentions.append(mention)
        message.mentions = mentions

        occurrence_ids: List[str] = []
        for notification in batch:
            if notification.occurrence_id not in occurrence_ids:
                occurrence_ids.append(notification.occurrence_id)
        message.occurrence_ids = occurrence_ids
        return message
