import os

# Must be set before celebrations.core.config is imported
os.environ.setdefault("CELEBRATIONS_SQLALCHEMY_DATABASE_URI", "sqlite://")
os.environ.setdefault("CELEBRATIONS_CELERY_BROKER_URL", "memory://")

from datetime import datetime
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from celebrations.db.base import Base
from celebrations.delivery import models  # noqa: F401  registers tables
from celebrations.delivery.models import Event, Occurrence, Team, User
from celebrations.delivery.schemas import OccurrenceState, OutboundMessage
from celebrations.utils.timezone import month_day_key


class FakeQueue:
    """Records what would have been put on the send-to-conversation queue."""

    def __init__(self) -> None:
        self.messages: List[OutboundMessage] = []

    def send(self, message: OutboundMessage) -> None:
        self.messages.append(message.model_copy(deep=True))


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def queue() -> FakeQueue:
    return FakeQueue()


def make_user(db, aad_id: str = "aad-sam", name: str = "Sam", **kwargs) -> User:
    user = User(
        aad_id=aad_id,
        name=name,
        conversation_id=kwargs.pop("conversation_id", f"personal-{aad_id}"),
        service_url=kwargs.pop("service_url", "https://smba.example.test/amer/"),
        tenant_id=kwargs.pop("tenant_id", "tenant-1"),
        **kwargs,
    )
    db.add(user)
    db.commit()
    return user


def make_team(db, team_id: str = "team-a", active_channel_id=None, **kwargs) -> Team:
    team = Team(
        team_id=team_id,
        name=kwargs.pop("name", team_id),
        service_url=kwargs.pop("service_url", "https://smba.example.test/amer/"),
        tenant_id=kwargs.pop("tenant_id", "tenant-1"),
        active_channel_id=active_channel_id,
        **kwargs,
    )
    db.add(team)
    db.commit()
    return team


def make_event(
    db,
    title: str = "Sam's Birthday",
    date: datetime = datetime(1990, 3, 10, 9, 0),
    owner_aad_object_id: str = "aad-sam",
    owner_name: str = "Sam",
    owner_teams_id: str = "29:sam",
    shared_teams=None,
    **kwargs,
) -> Event:
    event = Event(
        title=title,
        message=kwargs.pop("message", "Cake in the kitchen"),
        date=date,
        month_day=month_day_key(date),
        owner_aad_object_id=owner_aad_object_id,
        owner_name=owner_name,
        owner_teams_id=owner_teams_id,
        shared_teams=list(shared_teams) if shared_teams is not None else [],
        **kwargs,
    )
    db.add(event)
    db.commit()
    return event


def make_occurrence(
    db,
    event: Event,
    date: datetime,
    state: OccurrenceState = OccurrenceState.INITIAL,
    **kwargs,
) -> Occurrence:
    occurrence = Occurrence(
        event_id=event.id,
        date=date,
        owner_aad_object_id=event.owner_aad_object_id,
        state=int(state),
        **kwargs,
    )
    db.add(occurrence)
    db.commit()
    return occurrence
