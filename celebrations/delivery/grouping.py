"""
Groups due occurrences by the teams they are shared with.

An event knows its audience teams, but messages are sent per team, so each
occurrence is expanded into one notification per team first.
"""
import logging
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from . import repository
from .models import Occurrence, Team
from .schemas import Notification, TeamTarget

logger = logging.getLogger(__name__)


def team_target_from(team: Team) -> TeamTarget:
    return TeamTarget(
        team_id=team.team_id,
        service_url=team.service_url,
        tenant_id=team.tenant_id,
        active_channel_id=team.active_channel_id,
    )


class NotificationGrouper:
    def __init__(self, db: Session):
        self.db = db

    def group(self, occurrences: Iterable[Occurrence]) -> Dict[TeamTarget, List[Notification]]:
        notifications = self.expand(occurrences)
        return self.group_by_team(notifications)

    def expand(self, occurrences: Iterable[Occurrence]) -> List[Notification]:
        """One notification per (occurrence, shared team)."""
        notifications: List[Notification] = []
        for occurrence in occurrences:
            event = repository.get_event(self.db, occurrence.event_id)
            if event is None:
                logger.info(f"[Grouping] Event {occurrence.event_id} of occurrence {occurrence.id} is gone, skipping")
                continue

            team_ids = event.shared_teams or []
            if not team_ids:
                continue

            for team_id in team_ids:
                notifications.append(
                    Notification(
                        team_id=team_id,
                        occurrence_id=occurrence.id,
                        event_title=event.title,
                        event_message=event.message,
                        event_image=event.image,
                        owner_display_name=event.owner_name,
                        owner_teams_id=event.owner_teams_id,
                    )
                )
        return notifications

    def group_by_team(self, notifications: Iterable[Notification]) -> Dict[TeamTarget, List[Notification]]:
        by_team_id: Dict[str, List[Notification]] = {}
        for notification in notifications:
            by_team_id.setdefault(notification.team_id, []).append(notification)

        grouped: Dict[TeamTarget, List[Notification]] = {}
        for team_id, team_notifications in by_team_id.items():
            team = repository.get_team(self.db, team_id)
            if team is None:
                # Bot was removed from the team
                logger.info(f"[Grouping] Team {team_id} not found, dropping {len(team_notifications)} notifications")
                continue
            grouped[team_target_from(team)] = team_notifications
        return grouped
