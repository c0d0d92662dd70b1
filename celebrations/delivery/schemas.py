"""
Schemas shared by the delivery pipeline.

Notifications, team targets and outbound messages are transient: they live
for one pipeline run, or travel through the queue as JSON.
"""
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OccurrenceState(IntEnum):
    UNKNOWN = 0
    INITIAL = 1
    SKIPPED = 2
    DELETED = 3
    DELIVERING = 4
    DELIVERED = 5


class DeliveryStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    THROTTLED = "Throttled"
    NOT_FOUND = "NotFound"


class ConversationType(str, Enum):
    CHANNEL = "channel"
    PERSONAL = "personal"


class Notification(BaseModel):
    """One occurrence delivered to one team"""
    model_config = ConfigDict(frozen=True)

    team_id: str
    occurrence_id: str
    event_title: str
    event_message: Optional[str] = None
    event_image: Optional[str] = None
    owner_display_name: Optional[str] = None
    owner_teams_id: Optional[str] = None


class TeamTarget(BaseModel):
    """Resolved delivery address of a team"""
    model_config = ConfigDict(frozen=True)

    team_id: str
    service_url: str
    tenant_id: Optional[str] = None
    active_channel_id: Optional[str] = None

    @property
    def message_target_channel(self) -> str:
        if self.active_channel_id and self.active_channel_id.strip():
            return self.active_channel_id
        return self.team_id


class Mention(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str

    @property
    def text(self) -> str:
        return f"<at>{self.name}</at>"

    def to_entity(self) -> Dict[str, Any]:
        return {
            "type": "mention",
            "text": self.text,
            "mentioned": {"id": self.id, "name": self.name},
        }


class OutboundMessage(BaseModel):
    """Bot message waiting in the send-to-conversation queue"""

    type: str = "message"
    service_url: str
    conversation_id: str
    conversation_type: ConversationType = ConversationType.PERSONAL
    team_id: Optional[str] = None
    tenant_id: Optional[str] = None
    bot_id: Optional[str] = None
    text: Optional[str] = None
    summary: Optional[str] = None
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    attachment_layout: Optional[str] = None
    mentions: List[Mention] = Field(default_factory=list)
    occurrence_ids: List[str] = Field(default_factory=list)
    reply_to_id: Optional[str] = None

    @property
    def is_channel_message(self) -> bool:
        return self.conversation_type == ConversationType.CHANNEL

    def to_activity(self) -> Dict[str, Any]:
        """Bot Framework activity payload."""
        activity: Dict[str, Any] = {
            "type": self.type,
            "serviceUrl": self.service_url,
            "channelId": "msteams",
            "conversation": {
                "id": self.conversation_id,
                "conversationType": self.conversation_type.value,
            },
            "attachments": list(self.attachments),
        }
        if self.bot_id:
            activity["from"] = {"id": f"28:{self.bot_id}"}
        if self.text is not None:
            activity["text"] = self.text
        if self.summary is not None:
            activity["summary"] = self.summary
        if self.attachment_layout:
            activity["attachmentLayout"] = self.attachment_layout
        if self.mentions:
            activity["entities"] = [mention.to_entity() for mention in self.mentions]
        if self.team_id:
            activity["channelData"] = {"team": {"id": self.team_id}}
            if self.tenant_id:
                activity["channelData"]["tenant"] = {"id": self.tenant_id}
        if self.reply_to_id:
            activity["id"] = self.reply_to_id
        return activity
