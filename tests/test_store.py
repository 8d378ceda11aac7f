from __future__ import annotations

from datetime import date

import pytest

from eventboard import crud, database
from eventboard.errors import (
    Conflict,
    DuplicateRegistration,
    EventNotFound,
    UserNotFound,
    UsernameTaken,
)
from eventboard.store import SqlStore


def _event(store, *, title="Launch Party", day=date(2025, 6, 1), time="18:00"):
    return store.create_event(
        title=title,
        description="Drinks and demos",
        date=day,
        time=time,
        location="Main Hall",
        organizer="Platform Team",
        category="Social",
    )


def _user(store, username="alice", **extra):
    return store.create_user(username=username, password="salt:hash", **extra)


def test_create_event_starts_with_no_attendees(store):
    event = _event(store)
    assert event.id is not None
    assert event.attendees == 0
    assert event.status == "upcoming"
    assert store.get_event(event.id) == event


def test_list_events_orders_by_date_then_id(store):
    later = _event(store, title="Later", day=date(2025, 7, 1))
    first = _event(store, title="First", day=date(2025, 6, 1))
    second = _event(store, title="Second", day=date(2025, 6, 1))
    assert [e.id for e in store.list_events()] == [first.id, second.id, later.id]


def test_update_event_touches_only_given_fields(store):
    event = _event(store)
    updated = store.update_event(event.id, {"title": "Renamed"})
    assert updated.title == "Renamed"
    assert updated.location == event.location
    assert updated.date == event.date


def test_update_missing_event_raises(store):
    with pytest.raises(EventNotFound):
        store.update_event(999, {"title": "Nope"})


def test_register_increments_counter_once(store):
    event = _event(store)
    user = _user(store)

    registration = store.register(event.id, user.id)

    assert registration.event_id == event.id
    assert registration.user_id == user.id
    assert store.is_registered(event.id, user.id)
    assert store.get_event(event.id).attendees == 1
    assert store.count_registrations(event.id) == 1


def test_duplicate_registration_leaves_state_unchanged(store):
    event = _event(store)
    user = _user(store)
    store.register(event.id, user.id)

    with pytest.raises(DuplicateRegistration):
        store.register(event.id, user.id)

    assert store.get_event(event.id).attendees == 1
    assert store.count_registrations(event.id) == 1


def test_unique_constraint_rejects_duplicate_past_existence_check(monkeypatch):
    store = SqlStore(database.SessionLocal)
    event = _event(store)
    user = _user(store)
    monkeypatch.setattr(crud, "get_registration", lambda session, **kwargs: None)

    store.register(event.id, user.id)
    with pytest.raises(DuplicateRegistration):
        store.register(event.id, user.id)

    assert store.get_event(event.id).attendees == 1
    assert store.count_registrations(event.id) == 1


def test_register_for_missing_event_or_user(store):
    event = _event(store)
    user = _user(store)
    with pytest.raises(EventNotFound):
        store.register(999, user.id)
    with pytest.raises(UserNotFound):
        store.register(event.id, 999)
    assert store.get_event(event.id).attendees == 0


def test_counter_matches_registrations_across_users(store):
    event = _event(store)
    users = [_user(store, f"user{i}") for i in range(3)]
    for user in users:
        store.register(event.id, user.id)
    assert store.get_event(event.id).attendees == store.count_registrations(event.id) == 3


def test_delete_event_removes_its_registrations(store):
    event = _event(store)
    user = _user(store)
    store.register(event.id, user.id)

    store.delete_event(event.id)

    assert store.get_event(event.id) is None
    assert store.list_registered_events(user.id) == []
    assert not store.is_registered(event.id, user.id)


def test_delete_missing_event_raises(store):
    with pytest.raises(EventNotFound):
        store.delete_event(999)


def test_delete_user_decrements_counters(store):
    event = _event(store)
    alice = _user(store, "alice")
    bob = _user(store, "bob")
    store.register(event.id, alice.id)
    store.register(event.id, bob.id)

    store.delete_user(alice.id)

    assert store.get_user(alice.id) is None
    assert store.get_event(event.id).attendees == 1
    assert store.count_registrations(event.id) == 1


def test_list_registered_events_is_ordered(store):
    user = _user(store)
    late = _event(store, title="Late", day=date(2025, 8, 1))
    early = _event(store, title="Early", day=date(2025, 6, 1))
    _event(store, title="Unrelated", day=date(2025, 7, 1))
    store.register(late.id, user.id)
    store.register(early.id, user.id)

    assert [e.title for e in store.list_registered_events(user.id)] == ["Early", "Late"]


def test_save_statuses_reports_changed_rows(store):
    event = _event(store)
    other = _event(store, title="Other")

    changed = store.save_statuses({event.id: "past", other.id: "upcoming"})

    assert changed == 1
    assert store.get_event(event.id).status == "past"
    assert store.get_event(other.id).status == "upcoming"


def test_usernames_are_unique(store):
    _user(store, "alice")
    with pytest.raises(UsernameTaken):
        _user(store, "alice")


def test_rename_to_taken_username_is_rejected(store):
    _user(store, "alice")
    bob = _user(store, "bob")
    with pytest.raises(UsernameTaken):
        store.update_user(bob.id, {"username": "alice"})
    assert store.get_user(bob.id).username == "bob"


def test_external_ids_are_unique(store):
    _user(store, "alice", external_id="42")
    with pytest.raises(Conflict) as excinfo:
        _user(store, "bob", external_id="42")
    assert not isinstance(excinfo.value, UsernameTaken)
    assert excinfo.value.message == "External account is already linked"

    carol = _user(store, "carol")
    with pytest.raises(Conflict) as excinfo:
        store.update_user(carol.id, {"external_id": "42"})
    assert excinfo.value.message == "External account is already linked"


def test_lookup_helpers(store):
    user = _user(store, "alice", external_id="4242", role="admin")
    assert store.get_user_by_username("alice").id == user.id
    assert store.get_user_by_external_id("4242").id == user.id
    assert store.get_user_by_username("missing") is None
    assert store.get_user(user.id).is_admin


def test_update_and_delete_missing_user(store):
    with pytest.raises(UserNotFound):
        store.update_user(999, {"email": "x@example.com"})
    with pytest.raises(UserNotFound):
        store.delete_user(999)
