from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, extract, or_, select, update
from sqlalchemy.orm import Session

from celebrations.utils.timezone import (
    occurrence_datetime,
    to_utc_naive,
    upcoming_month_day_keys,
    upcoming_year,
    utcnow,
)
from .models import Event, Occurrence, Team, User
from .schemas import DeliveryStatus, OccurrenceState


# --- Occurrences ---

def get_occurrence(db: Session, occurrence_id: str) -> Optional[Occurrence]:
    return db.get(Occurrence, occurrence_id)


def get_occurrence_in_year(db: Session, event_id: str, year: int) -> Optional[Occurrence]:
    stmt = (
        select(Occurrence)
        .where(Occurrence.event_id == event_id)
        .where(extract("year", Occurrence.date) == year)
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def create_if_absent_for_year(db: Session, event: Event, now: Optional[datetime] = None) -> Optional[Occurrence]:
    """
    Create the upcoming occurrence of ``event``.

    The target year is the one of the next month-day match on or after
    ``now``, so late in December an early January event lands in next year.
    Returns None when the event already has an occurrence in that year, which
    keeps creation idempotent across preview passes.
    """
    now = to_utc_naive(now or utcnow())
    year = upcoming_year(event.date, now.date())
    if get_occurrence_in_year(db, event.id, year) is not None:
        return None

    occurrence = Occurrence(
        event_id=event.id,
        date=occurrence_datetime(event.date, year),
        timezone=event.timezone,
        owner_aad_object_id=event.owner_aad_object_id,
        state=int(OccurrenceState.INITIAL),
    )
    db.add(occurrence)
    db.commit()
    db.refresh(occurrence)
    return occurrence


def set_state(db: Session, occurrence_id: str, state: OccurrenceState) -> bool:
    """Returns False when no occurrence has this id."""
    result = db.execute(
        update(Occurrence)
        .where(Occurrence.id == occurrence_id)
        .values(state=int(state), updated_at=datetime.utcnow())
    )
    db.commit()
    return bool(result.rowcount)


def set_delivering(db: Session, occurrence_id: str, total_message_count: int) -> bool:
    """
    Lock an occurrence for delivery so the next scan won't pick it up again.

    Only an Initial occurrence can be locked; returns False for a missing one
    or one that moved on meanwhile (e.g. the owner skipped it after the scan).
    An occurrence without any message (no reachable team) is completed right away.
    Results the consumer already recorded for this occurrence are kept.
    """
    occurrence = db.get(Occurrence, occurrence_id)
    if occurrence is None:
        return False
    db.refresh(occurrence)
    if occurrence.occurrence_state != OccurrenceState.INITIAL:
        return False

    occurrence.state = int(OccurrenceState.DELIVERING)
    occurrence.total_message_count = total_message_count
    if total_message_count == 0:
        occurrence.is_completed = True
        occurrence.warning_message = "No team to deliver to"
    else:
        _complete_if_attempted(occurrence)
    occurrence.updated_at = datetime.utcnow()
    db.commit()
    return True


def _complete_if_attempted(occurrence: Occurrence) -> None:
    attempted = (occurrence.succeeded or 0) + (occurrence.throttled or 0) + (occurrence.failed or 0)
    if not occurrence.total_message_count or attempted < occurrence.total_message_count:
        return
    occurrence.is_completed = True
    if occurrence.succeeded:
        occurrence.state = int(OccurrenceState.DELIVERED)
    else:
        occurrence.warning_message = "No message for this occurrence was delivered"


def find_due_in_initial_state(db: Session, now: Optional[datetime] = None) -> List[Occurrence]:
    now = to_utc_naive(now or utcnow())
    stmt = (
        select(Occurrence)
        .where(Occurrence.state == int(OccurrenceState.INITIAL))
        .where(Occurrence.date <= now)
    )
    return list(db.execute(stmt).scalars())


def find_due_for_preview(db: Session, now: Optional[datetime] = None, horizon_days: int = 3) -> List[Event]:
    """Events whose month-day falls within the next ``horizon_days`` days."""
    now = to_utc_naive(now or utcnow())
    keys = upcoming_month_day_keys(now.date(), horizon_days)
    stmt = select(Event).where(or_(*[Event.month_day == key for key in keys]))
    return list(db.execute(stmt).scalars())


def find_stale_delivering(db: Session, older_than: datetime) -> List[Occurrence]:
    """Delivering occurrences whose messages were never all attempted."""
    stmt = (
        select(Occurrence)
        .where(Occurrence.state == int(OccurrenceState.DELIVERING))
        .where(Occurrence.is_completed == False)  # noqa: E712
        .where(Occurrence.updated_at <= to_utc_naive(older_than))
    )
    return list(db.execute(stmt).scalars())


def reset_to_initial(db: Session, occurrence_id: str) -> bool:
    result = db.execute(
        update(Occurrence)
        .where(Occurrence.id == occurrence_id)
        .where(Occurrence.state == int(OccurrenceState.DELIVERING))
        .values(
            state=int(OccurrenceState.INITIAL),
            succeeded=0,
            failed=0,
            throttled=0,
            total_message_count=0,
            is_completed=False,
            warning_message="Reset after staying in Delivering past the staleness threshold",
            updated_at=datetime.utcnow(),
        )
    )
    db.commit()
    return bool(result.rowcount)


def record_delivery_result(
    db: Session,
    occurrence_id: str,
    status: DeliveryStatus,
    error: Optional[str] = None,
) -> Optional[Occurrence]:
    """
    Count one outbound message outcome against an occurrence.

    Once every message carrying the occurrence was attempted the occurrence is
    completed; it moves to Delivered if at least one message went through.
    """
    occurrence = db.get(Occurrence, occurrence_id)
    if occurrence is None:
        return None

    if status == DeliveryStatus.SUCCEEDED:
        occurrence.succeeded = (occurrence.succeeded or 0) + 1
        occurrence.sent_date = datetime.utcnow()
    elif status == DeliveryStatus.THROTTLED:
        occurrence.throttled = (occurrence.throttled or 0) + 1
    else:
        occurrence.failed = (occurrence.failed or 0) + 1
    if error:
        occurrence.exception_message = error

    # Still Initial when the consumer beats the delivery pass to it; set_delivering completes it then
    if occurrence.occurrence_state == OccurrenceState.DELIVERING:
        _complete_if_attempted(occurrence)

    occurrence.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(occurrence)
    return occurrence


def delete_initial_occurrences_for_event(db: Session, event_id: str) -> int:
    """Purge occurrences not yet picked up, e.g. after the event date changed."""
    stmt = select(Occurrence).where(
        and_(
            Occurrence.event_id == event_id,
            Occurrence.state == int(OccurrenceState.INITIAL),
        )
    )
    occurrences = list(db.execute(stmt).scalars())
    for occurrence in occurrences:
        db.delete(occurrence)
    db.commit()
    return len(occurrences)


# --- Events ---

def get_event(db: Session, event_id: str) -> Optional[Event]:
    return db.get(Event, event_id)


def save_event(db: Session, event: Event) -> Event:
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def list_events_shared_with_team(db: Session, team_id: str, owner_teams_id: Optional[str] = None) -> List[Event]:
    # Shared teams are a JSON list; filter in Python to stay dialect neutral
    stmt = select(Event)
    if owner_teams_id:
        stmt = stmt.where(Event.owner_teams_id == owner_teams_id)
    return [event for event in db.execute(stmt).scalars() if team_id in (event.shared_teams or [])]


# --- Teams ---

def get_team(db: Session, team_id: str) -> Optional[Team]:
    return db.get(Team, team_id)


def save_team(db: Session, team: Team) -> Team:
    db.add(team)
    db.commit()
    db.refresh(team)
    return team


def reset_team_active_channel(db: Session, team_id: str) -> Optional[Team]:
    """Point the team back at its General channel."""
    team = db.get(Team, team_id)
    if team is None:
        return None
    team.active_channel_id = None
    team.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(team)
    return team


# --- Users ---

def get_user(db: Session, aad_id: str) -> Optional[User]:
    return db.get(User, aad_id)
