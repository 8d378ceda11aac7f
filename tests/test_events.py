from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from eventboard import events as catalog
from eventboard import users as accounts
from eventboard.auth import Principal, verify_password
from eventboard.errors import AuthorizationError, StorageError, ValidationError
from eventboard.scheduler import refresh_cached_statuses
from eventboard.status import EventStatus
from eventboard.store import MemoryStore

NOW = datetime(2025, 5, 22, 12, 0)
ADMIN = Principal(user_id=1, role="admin")
MEMBER = Principal(user_id=2, role="user")


def _fields(**overrides):
    fields = {
        "title": "Board Games",
        "description": "Bring your own dice",
        "date": date(2025, 5, 22),
        "time": "11:00 - 13:00",
        "location": "Library",
        "organizer": "Games Club",
        "category": "Social",
        "image": None,
    }
    fields.update(overrides)
    return fields


def test_create_event_sets_initial_status(store):
    event = catalog.create_event(store, ADMIN, _fields(), now=NOW)
    assert event.status == "ongoing"
    assert store.get_event(event.id).status == "ongoing"


def test_create_event_requires_admin(store):
    with pytest.raises(AuthorizationError):
        catalog.create_event(store, MEMBER, _fields(), now=NOW)
    assert store.list_events() == []


def test_create_event_rejects_protected_fields(store):
    with pytest.raises(ValidationError) as excinfo:
        catalog.create_event(store, ADMIN, _fields(attendees=50), now=NOW)
    assert excinfo.value.errors == [{"loc": ["attendees"], "msg": "Field cannot be set"}]


def test_update_event_recomputes_status_when_date_changes(store):
    event = catalog.create_event(store, ADMIN, _fields(), now=NOW)
    updated, stale = catalog.update_event(
        store, ADMIN, event.id, {"date": date(2025, 6, 1)}, now=NOW
    )
    assert updated.status == "upcoming"
    assert updated.title == "Board Games"
    assert stale == {}


def test_update_event_without_date_change_resolves_stale_status(store):
    event = store.create_event(**_fields(date=date(2020, 1, 1), time="10:00"))
    assert event.status == "upcoming"

    updated, stale = catalog.update_event(
        store, ADMIN, event.id, {"title": "Renamed"}, now=NOW
    )

    assert updated.status == "past"
    assert updated.title == "Renamed"
    assert stale == {event.id: "past"}

    unchanged, stale = catalog.update_event(store, ADMIN, event.id, {}, now=NOW)
    assert unchanged.status == "past"
    assert stale == {event.id: "past"}


def test_update_event_rejects_attendee_counter(store):
    event = catalog.create_event(store, ADMIN, _fields(), now=NOW)
    with pytest.raises(ValidationError):
        catalog.update_event(store, ADMIN, event.id, {"attendees": 10}, now=NOW)
    assert store.get_event(event.id).attendees == 0


def test_reads_return_fresh_status_and_report_stale_cache(store):
    event = store.create_event(**_fields(date=date(2025, 5, 1), time="10:00"))
    assert event.status == "upcoming"

    listed, stale = catalog.list_events(store, now=NOW)

    assert listed[0].status == "past"
    assert stale == {event.id: "past"}
    assert store.get_event(event.id).status == "upcoming"
    assert catalog.write_back_statuses(store, stale) == 1
    assert store.get_event(event.id).status == "past"


def test_upcoming_and_past_partition_the_catalogue(store):
    for day, time in [
        (date(2025, 5, 21), "10:00"),
        (date(2025, 5, 22), "11:00 - 13:00"),
        (date(2025, 5, 22), "18:00"),
        (date(2025, 6, 2), "09:00"),
    ]:
        store.create_event(**_fields(date=day, time=time))

    upcoming, _ = catalog.upcoming_events(store, now=NOW)
    past, _ = catalog.past_events(store, now=NOW)

    assert [e.status for e in upcoming] == ["ongoing", "upcoming", "upcoming"]
    assert [e.status for e in past] == ["past"]
    assert len(upcoming) + len(past) == len(store.list_events())


def test_list_events_filters(store):
    store.create_event(**_fields(title="Chess Night", description="Tournament"))
    store.create_event(**_fields(title="Poetry Slam", date=date(2025, 6, 1)))

    found, _ = catalog.list_events(store, now=NOW, query="chess")
    assert [e.title for e in found] == ["Chess Night"]

    upcoming, _ = catalog.list_events(store, now=NOW, status=EventStatus.UPCOMING)
    assert [e.title for e in upcoming] == ["Poetry Slam"]


class _BrokenStore(MemoryStore):
    def save_statuses(self, statuses):
        raise StorageError()


def test_write_back_failure_is_swallowed():
    store = _BrokenStore()
    assert catalog.write_back_statuses(store, {1: "past"}) == 0


def test_refresh_cached_statuses_persists_changes():
    store = MemoryStore()
    event = store.create_event(**_fields(date=date(2000, 1, 1)))
    assert refresh_cached_statuses(store, duration=timedelta(hours=2)) == 1
    assert store.get_event(event.id).status == "past"
    assert refresh_cached_statuses(store) == 0


def test_signup_forces_user_role(store):
    user = accounts.signup(store, username="  carol  ", password="secret1")
    assert user.username == "carol"
    assert user.role == "user"
    assert verify_password("secret1", user.password)


def test_blank_username_is_rejected(store):
    with pytest.raises(ValidationError) as excinfo:
        accounts.signup(store, username="     ", password="secret1")
    assert excinfo.value.errors == [{"loc": ["username"], "msg": "Username cannot be blank"}]

    user = accounts.signup(store, username="carol", password="secret1")
    with pytest.raises(ValidationError):
        accounts.update_user(store, ADMIN, user.id, {"username": "  "})
    assert store.list_users()[0].username == "carol"


def test_empty_password_in_update_keeps_stored_hash(store):
    user = accounts.signup(store, username="carol", password="secret1")
    admin = Principal(user_id=999, role="admin")

    updated = accounts.update_user(
        store, admin, user.id, {"password": "", "display_name": "Carol"}
    )

    assert updated.password == user.password
    assert updated.display_name == "Carol"


def test_invalid_role_is_rejected(store):
    with pytest.raises(ValidationError):
        accounts.create_user(store, ADMIN, {"username": "dave", "role": "owner"})


def test_profile_update_ignores_role(store):
    user = accounts.signup(store, username="erin", password="secret1")
    principal = Principal.from_user(user)
    updated = accounts.update_profile(
        store, principal, {"role": "admin", "email": "erin@example.com"}
    )
    assert updated.role == "user"
    assert updated.email == "erin@example.com"
