from datetime import datetime

from celebrations.delivery.grouping import NotificationGrouper

from conftest import make_event, make_occurrence, make_team


def test_occurrence_expands_to_one_notification_per_shared_team(db):
    event = make_event(db, shared_teams=["team-a", "team-b"])
    occurrence = make_occurrence(db, event, datetime(2025, 3, 10, 9, 0))

    notifications = NotificationGrouper(db).expand([occurrence])

    assert [n.team_id for n in notifications] == ["team-a", "team-b"]
    assert {n.occurrence_id for n in notifications} == {occurrence.id}
    assert notifications[0].owner_display_name == "Sam"
    assert notifications[0].owner_teams_id == "29:sam"


def test_unshared_or_orphaned_occurrences_produce_nothing(db):
    unshared = make_event(db, shared_teams=[])
    occurrence = make_occurrence(db, unshared, datetime(2025, 3, 10))
    orphan = make_occurrence(db, unshared, datetime(2024, 3, 10))
    orphan.event_id = "deleted-event"
    db.commit()

    assert NotificationGrouper(db).expand([occurrence, orphan]) == []


def test_group_drops_unknown_teams(db):
    make_team(db, "team-a", active_channel_id="19:party")
    first = make_event(db, title="First", shared_teams=["team-a", "team-gone"])
    second = make_event(db, title="Second", shared_teams=["team-a"])
    occurrences = [
        make_occurrence(db, first, datetime(2025, 3, 10)),
        make_occurrence(db, second, datetime(2025, 3, 10)),
    ]

    grouped = NotificationGrouper(db).group(occurrences)

    assert len(grouped) == 1
    target, notifications = next(iter(grouped.items()))
    assert target.team_id == "team-a"
    assert target.message_target_channel == "19:party"
    assert [n.event_title for n in notifications] == ["First", "Second"]
