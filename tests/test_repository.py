from datetime import datetime, timedelta

from celebrations.delivery import repository
from celebrations.delivery.schemas import DeliveryStatus, OccurrenceState

from conftest import make_event, make_occurrence, make_team


def test_create_if_absent_for_year_is_idempotent(db):
    event = make_event(db, date=datetime(1990, 3, 10, 9, 0))
    now = datetime(2025, 3, 8, 12, 0)

    first = repository.create_if_absent_for_year(db, event, now)
    second = repository.create_if_absent_for_year(db, event, now)

    assert first is not None
    assert first.occurrence_state == OccurrenceState.INITIAL
    assert first.date == datetime(2025, 3, 10, 9, 0)
    assert second is None


def test_create_if_absent_for_year_allows_next_year(db):
    event = make_event(db)
    assert repository.create_if_absent_for_year(db, event, datetime(2024, 3, 8)) is not None
    assert repository.create_if_absent_for_year(db, event, datetime(2025, 3, 8)) is not None


def test_create_for_leap_day_event_in_non_leap_year(db):
    event = make_event(db, date=datetime(2000, 2, 29, 10, 0))
    occurrence = repository.create_if_absent_for_year(db, event, datetime(2025, 2, 27))
    assert occurrence.date == datetime(2025, 2, 28, 10, 0)


def test_early_january_event_seen_in_december_targets_next_year(db):
    event = make_event(db, date=datetime(1990, 1, 1, 9, 0))

    occurrence = repository.create_if_absent_for_year(db, event, datetime(2025, 12, 30, 6, 0))

    assert occurrence.date == datetime(2026, 1, 1, 9, 0)
    assert repository.create_if_absent_for_year(db, event, datetime(2026, 1, 1, 6, 0)) is None


def test_set_state_reports_missing_occurrence(db):
    assert repository.set_state(db, "missing", OccurrenceState.SKIPPED) is False


def test_find_due_in_initial_state(db):
    event = make_event(db)
    now = datetime(2025, 3, 10, 12, 0)
    due = make_occurrence(db, event, datetime(2025, 3, 10, 9, 0))
    make_occurrence(db, event, datetime(2025, 3, 11, 9, 0))
    make_occurrence(db, event, datetime(2025, 3, 9, 9, 0), state=OccurrenceState.SKIPPED)

    found = repository.find_due_in_initial_state(db, now)

    assert [o.id for o in found] == [due.id]


def test_find_due_for_preview_uses_month_day(db):
    soon = make_event(db, title="Soon", date=datetime(1990, 3, 12))
    make_event(db, title="Later", date=datetime(1990, 3, 13))
    leap = make_event(db, title="Leap", date=datetime(2000, 2, 29))

    assert [e.id for e in repository.find_due_for_preview(db, datetime(2025, 3, 10))] == [soon.id]
    assert [e.id for e in repository.find_due_for_preview(db, datetime(2025, 2, 27))] == [leap.id]


def test_record_delivery_result_completes_occurrence(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10))
    repository.set_delivering(db, occurrence.id, 2)

    occurrence = repository.record_delivery_result(db, occurrence.id, DeliveryStatus.FAILED, "boom")
    assert occurrence.occurrence_state == OccurrenceState.DELIVERING
    assert occurrence.is_completed is False

    occurrence = repository.record_delivery_result(db, occurrence.id, DeliveryStatus.SUCCEEDED)
    assert occurrence.succeeded == 1
    assert occurrence.failed == 1
    assert occurrence.is_completed is True
    assert occurrence.sent_date is not None
    assert occurrence.occurrence_state == OccurrenceState.DELIVERED


def test_record_delivery_result_without_success_stays_delivering(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10))
    repository.set_delivering(db, occurrence.id, 1)

    occurrence = repository.record_delivery_result(db, occurrence.id, DeliveryStatus.THROTTLED)

    assert occurrence.is_completed is True
    assert occurrence.throttled == 1
    assert occurrence.occurrence_state == OccurrenceState.DELIVERING
    assert occurrence.warning_message


def test_result_recorded_before_lock_is_kept(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10))

    occurrence = repository.record_delivery_result(db, occurrence.id, DeliveryStatus.SUCCEEDED)
    assert occurrence.occurrence_state == OccurrenceState.INITIAL

    repository.set_delivering(db, occurrence.id, 1)
    db.refresh(occurrence)
    assert occurrence.succeeded == 1
    assert occurrence.is_completed is True
    assert occurrence.occurrence_state == OccurrenceState.DELIVERED


def test_set_delivering_does_not_override_a_skip(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10))
    repository.set_state(db, occurrence.id, OccurrenceState.SKIPPED)

    assert repository.set_delivering(db, occurrence.id, 1) is False
    assert repository.set_delivering(db, "missing", 1) is False
    db.refresh(occurrence)
    assert occurrence.occurrence_state == OccurrenceState.SKIPPED


def test_set_delivering_without_messages_completes_immediately(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10))

    assert repository.set_delivering(db, occurrence.id, 0) is True
    db.refresh(occurrence)

    assert occurrence.occurrence_state == OccurrenceState.DELIVERING
    assert occurrence.is_completed is True


def test_stale_delivering_is_reset(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10))
    repository.set_delivering(db, occurrence.id, 1)

    stale = repository.find_stale_delivering(db, datetime.utcnow() + timedelta(minutes=1))
    assert [o.id for o in stale] == [occurrence.id]
    assert repository.find_stale_delivering(db, datetime.utcnow() - timedelta(hours=1)) == []

    assert repository.reset_to_initial(db, occurrence.id) is True
    db.refresh(occurrence)
    assert occurrence.occurrence_state == OccurrenceState.INITIAL
    assert occurrence.total_message_count == 0


def test_reset_to_initial_only_from_delivering(db):
    event = make_event(db)
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10), state=OccurrenceState.DELIVERED)
    assert repository.reset_to_initial(db, occurrence.id) is False


def test_delete_initial_occurrences_for_event(db):
    event = make_event(db)
    make_occurrence(db, event, datetime(2025, 3, 10))
    kept = make_occurrence(db, event, datetime(2024, 3, 10), state=OccurrenceState.DELIVERED)

    assert repository.delete_initial_occurrences_for_event(db, event.id) == 1
    assert repository.get_occurrence(db, kept.id) is not None


def test_list_events_shared_with_team(db):
    mine = make_event(db, title="Mine", shared_teams=["team-a", "team-b"])
    make_event(db, title="Other team", shared_teams=["team-b"])
    theirs = make_event(db, title="Theirs", owner_teams_id="29:alex", shared_teams=["team-a"])

    assert {e.id for e in repository.list_events_shared_with_team(db, "team-a")} == {mine.id, theirs.id}
    assert [e.id for e in repository.list_events_shared_with_team(db, "team-a", "29:alex")] == [theirs.id]


def test_reset_team_active_channel(db):
    make_team(db, "team-a", active_channel_id="19:deleted")

    team = repository.reset_team_active_channel(db, "team-a")

    assert team.active_channel_id is None
    assert team.message_target_channel == "team-a"
    assert repository.reset_team_active_channel(db, "missing") is None
