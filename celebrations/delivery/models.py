"""
Table models for events, their yearly occurrences, teams and users.
"""
from datetime import datetime
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text

from celebrations.db.base import Base
from .schemas import OccurrenceState


def _new_id() -> str:
    return str(uuid.uuid4())


class Event(Base):
    """Recurring, user-owned celebration definition"""
    __tablename__ = "events"

    id = Column(String, primary_key=True, default=_new_id)
    event_type = Column(String, nullable=False, default="birthday")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    image = Column(String, nullable=True)
    date = Column(DateTime, nullable=False)  # reference date, UTC-naive
    month_day = Column(String(4), nullable=False, index=True)  # "MMDD"
    timezone = Column(String, nullable=True)
    owner_aad_object_id = Column(String, nullable=False, index=True)
    owner_name = Column(String, nullable=True)
    owner_teams_id = Column(String, nullable=True, index=True)
    shared_teams = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Occurrence(Base):
    """One calendar-year instantiation of an event"""
    __tablename__ = "occurrences"

    id = Column(String, primary_key=True, default=_new_id)
    event_id = Column(String, nullable=False, index=True)
    date = Column(DateTime, nullable=False)  # UTC-naive
    timezone = Column(String, nullable=True)
    owner_aad_object_id = Column(String, nullable=True)
    state = Column(Integer, nullable=False, default=int(OccurrenceState.INITIAL))

    sent_date = Column(DateTime, nullable=True)
    succeeded = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    throttled = Column(Integer, nullable=False, default=0)
    total_message_count = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)
    exception_message = Column(Text, nullable=True)
    warning_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_occurrences_state_date", "state", "date"),
        Index("ix_occurrences_event_date", "event_id", "date"),
    )

    @property
    def occurrence_state(self) -> OccurrenceState:
        return OccurrenceState(self.state or 0)


class Team(Base):
    """Team the bot is installed in; the delivery target of shared events"""
    __tablename__ = "teams"

    team_id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    service_url = Column(String, nullable=False)
    tenant_id = Column(String, nullable=True)
    who_added_bot = Column(String, nullable=True)
    active_channel_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def message_target_channel(self) -> str:
        # The team id doubles as the General channel id
        if self.active_channel_id and self.active_channel_id.strip():
            return self.active_channel_id
        return self.team_id


class User(Base):
    """Bot user with a personal conversation"""
    __tablename__ = "users"

    aad_id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    upn = Column(String, nullable=True)
    user_id = Column(String, nullable=True)
    conversation_id = Column(String, nullable=True)
    service_url = Column(String, nullable=True)
    tenant_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
