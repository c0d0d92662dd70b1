"""
Adaptive card attachments for celebration and preview messages.
"""
from typing import Any, Dict, List, Optional

from .schemas import Notification

ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"
ADAPTIVE_CARD_VERSION = "1.0"

SKIP_EVENT_COMMAND = "SkipEvent"


def _attachment(body: List[Dict[str, Any]], actions: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    content: Dict[str, Any] = {
        "type": "AdaptiveCard",
        "version": ADAPTIVE_CARD_VERSION,
        "body": body,
    }
    if actions:
        content["actions"] = actions
    return {"contentType": ADAPTIVE_CARD_CONTENT_TYPE, "content": content}


def _event_body(title: str, message: Optional[str], image: Optional[str], owner_name: Optional[str]) -> List[Dict[str, Any]]:
    body: List[Dict[str, Any]] = []
    if image:
        body.append({"type": "Image", "url": image, "size": "Stretch"})
    body.append({"type": "TextBlock", "text": title, "weight": "Bolder", "size": "Large", "wrap": True})
    if owner_name:
        body.append({"type": "TextBlock", "text": owner_name, "isSubtle": True, "spacing": "None"})
    if message:
        body.append({"type": "TextBlock", "text": message, "wrap": True})
    return body


def build_event_attachment(notification: Notification) -> Dict[str, Any]:
    return _attachment(
        _event_body(
            notification.event_title,
            notification.event_message,
            notification.event_image,
            notification.owner_display_name,
        )
    )


def build_preview_attachment(
    event_id: str,
    title: str,
    message: Optional[str],
    image: Optional[str],
    occurrence_id: str,
    owner_aad_object_id: str,
    owner_name: Optional[str],
    with_skip_action: bool = True,
) -> Dict[str, Any]:
    """Preview shown to the owner; the Skip action posts back the occurrence to skip."""
    actions = None
    if with_skip_action:
        actions = [
            {
                "type": "Action.Submit",
                "title": "Skip this year",
                "data": {
                    "msteams": {"type": "messageBack", "text": SKIP_EVENT_COMMAND},
                    "eventId": event_id,
                    "occurrenceId": occurrence_id,
                    "ownerAadObjectId": owner_aad_object_id,
                },
            }
        ]
    return _attachment(_event_body(title, message, image, owner_name), actions)
