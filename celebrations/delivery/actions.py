"""
Owner and team actions that touch the delivery pipeline's records.

These are invoked by the bot runtime (preview card Skip button, message target
channel change, bot removed from a team, member left a team) and by event
edits.
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from celebrations.utils.timezone import month_day_key, to_utc_naive
from . import repository
from .cards import build_preview_attachment
from .models import Event, Occurrence, Team, User
from .schemas import ConversationType, OccurrenceState, OutboundMessage

logger = logging.getLogger(__name__)

EVENT_SKIPPED_MESSAGE_FORMAT = "OK, I'll skip {title} this year and won't share it with your teams."


def skip_occurrence(db: Session, occurrence_id: str, owner_aad_object_id: str) -> Optional[Occurrence]:
    """
    Owner declined this year's celebration from the preview card.

    Only an occurrence of the owner's own event that is still Initial can be
    skipped; returns None otherwise.
    """
    occurrence = repository.get_occurrence(db, occurrence_id)
    if occurrence is None or occurrence.owner_aad_object_id != owner_aad_object_id:
        return None
    if occurrence.occurrence_state != OccurrenceState.INITIAL:
        logger.info(f"[Actions] Occurrence {occurrence_id} is {occurrence.occurrence_state.name}, cannot skip")
        return None

    repository.set_state(db, occurrence_id, OccurrenceState.SKIPPED)
    db.refresh(occurrence)
    return occurrence


def build_skip_replies(
    event: Event,
    occurrence: Occurrence,
    user: User,
    preview_activity_id: str,
    bot_id: Optional[str] = None,
) -> Tuple[OutboundMessage, OutboundMessage]:
    """
    Replacement for the preview card without the Skip action, and the
    confirmation text for the owner.
    """
    attachment = build_preview_attachment(
        event_id=event.id,
        title=event.title,
        message=event.message,
        image=event.image,
        occurrence_id=occurrence.id,
        owner_aad_object_id=occurrence.owner_aad_object_id,
        owner_name=user.name,
        with_skip_action=False,
    )
    updated_preview = OutboundMessage(
        service_url=user.service_url,
        conversation_id=user.conversation_id,
        conversation_type=ConversationType.PERSONAL,
        tenant_id=user.tenant_id,
        bot_id=bot_id,
        attachments=[attachment],
        reply_to_id=preview_activity_id,
    )
    confirmation = OutboundMessage(
        service_url=user.service_url,
        conversation_id=user.conversation_id,
        conversation_type=ConversationType.PERSONAL,
        tenant_id=user.tenant_id,
        bot_id=bot_id,
        text=EVENT_SKIPPED_MESSAGE_FORMAT.format(title=event.title),
    )
    return updated_preview, confirmation


def share_event_with_team(db: Session, event_id: str, team_id: str) -> bool:
    event = repository.get_event(db, event_id)
    if event is None:
        return False
    teams = list(event.shared_teams or [])
    if team_id in teams:
        return False
    teams.append(team_id)
    event.shared_teams = teams
    repository.save_event(db, event)
    return True


def stop_sharing_events_with_team(db: Session, team_id: str, owner_teams_id: Optional[str] = None) -> int:
    """
    Drop ``team_id`` from events' audiences.

    Without ``owner_teams_id`` every event stops being shared with the team
    (bot removed from the team); with it only that member's events do (member
    left the team).
    """
    updated = 0
    for event in repository.list_events_shared_with_team(db, team_id, owner_teams_id):
        event.shared_teams = [t for t in event.shared_teams if t != team_id]
        repository.save_event(db, event)
        updated += 1
    return updated


def update_event_date(db: Session, event_id: str, new_date: datetime) -> int:
    """
    Move an event to a new reference date.

    Occurrences not yet picked up are purged so the next preview pass creates
    them again for the new date. Returns how many were purged.
    """
    event = repository.get_event(db, event_id)
    if event is None:
        return 0

    new_date = to_utc_naive(new_date)
    if event.date == new_date:
        return 0

    event.date = new_date
    event.month_day = month_day_key(new_date)
    repository.save_event(db, event)
    purged = repository.delete_initial_occurrences_for_event(db, event_id)
    if purged:
        logger.info(f"[Actions] Event {event_id} date changed, purged {purged} pending occurrences")
    return purged


def set_team_active_channel(db: Session, team_id: str, channel_id: Optional[str]) -> Optional[Team]:
    """
    Choose the channel a team's celebrations are posted to.

    A blank ``channel_id`` points the team back at its General channel.
    Returns None when the bot is not installed in the team.
    """
    team = repository.get_team(db, team_id)
    if team is None:
        return None
    team.active_channel_id = channel_id.strip() if channel_id and channel_id.strip() else None
    team = repository.save_team(db, team)
    logger.info(f"[Actions] Team {team_id} now posts to {team.message_target_channel}")
    return team


def remove_team(db: Session, team_id: str) -> bool:
    """Bot uninstalled from a team: forget the team and unshare its events."""
    team = repository.get_team(db, team_id)
    if team is not None:
        db.delete(team)
        db.commit()
    stop_sharing_events_with_team(db, team_id)
    return team is not None
