"""Storage backends behind a single interface.

``SqlStore`` persists through SQLAlchemy; ``MemoryStore`` keeps everything in
process memory for tests and throwaway demos. The application is handed one of
them at start-up and never reaches for a module-level instance.
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from . import database
from .database import get_session
from .errors import (
    Conflict,
    DuplicateRegistration,
    EventNotFound,
    StorageError,
    UserNotFound,
    UsernameTaken,
)
from .models import Event, EventAttendee, User
from .records import EventRecord, RegistrationRecord, UserRecord
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


class Store(ABC):
    """Persistence operations used by the services."""

    # Users

    @abstractmethod
    def list_users(self) -> list[UserRecord]: ...

    @abstractmethod
    def get_user(self, user_id: int) -> UserRecord | None: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> UserRecord | None: ...

    @abstractmethod
    def get_user_by_external_id(self, external_id: str) -> UserRecord | None: ...

    @abstractmethod
    def create_user(self, **fields: Any) -> UserRecord: ...

    @abstractmethod
    def update_user(self, user_id: int, changes: dict[str, Any]) -> UserRecord: ...

    @abstractmethod
    def delete_user(self, user_id: int) -> None: ...

    # Events

    @abstractmethod
    def list_events(self) -> list[EventRecord]:
        """Return every event ordered by ``(date, id)``."""

    @abstractmethod
    def get_event(self, event_id: int) -> EventRecord | None: ...

    @abstractmethod
    def create_event(self, **fields: Any) -> EventRecord: ...

    @abstractmethod
    def update_event(self, event_id: int, changes: dict[str, Any]) -> EventRecord: ...

    @abstractmethod
    def delete_event(self, event_id: int) -> None: ...

    @abstractmethod
    def save_statuses(self, statuses: dict[int, str]) -> int:
        """Rewrite cached statuses and return how many changed."""

    # Registrations

    @abstractmethod
    def register(self, event_id: int, user_id: int) -> RegistrationRecord:
        """Register a user once per event and bump the attendee counter.

        Raises ``EventNotFound`` or ``DuplicateRegistration``; on any failure
        neither the counter nor the registration table changes.
        """

    @abstractmethod
    def is_registered(self, event_id: int, user_id: int) -> bool: ...

    @abstractmethod
    def list_registered_events(self, user_id: int) -> list[EventRecord]:
        """Events the user registered for, ordered by ``(date, id)``."""

    @abstractmethod
    def count_registrations(self, event_id: int) -> int: ...


def _event_record(event: Event) -> EventRecord:
    return EventRecord(
        id=event.id,
        title=event.title,
        description=event.description,
        date=event.date,
        time=event.time,
        location=event.location,
        organizer=event.organizer,
        category=event.category,
        image=event.image,
        attendees=event.attendees,
        status=event.status,
        created_at=event.created_at,
    )


def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        username=user.username,
        password=user.password,
        email=user.email,
        display_name=user.display_name,
        external_id=user.external_id,
        role=user.role,
        created_at=user.created_at,
    )


def _registration_record(registration: EventAttendee) -> RegistrationRecord:
    return RegistrationRecord(
        id=registration.id,
        event_id=registration.event_id,
        user_id=registration.user_id,
        created_at=registration.created_at,
    )


class SqlStore(Store):
    """Store backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory):
        self._factory = session_factory

    @contextmanager
    def _transaction(self, *, conflict: type[Conflict] = Conflict) -> Iterator[Session]:
        try:
            with get_session(self._factory) as session:
                yield session
        except IntegrityError as exc:
            logger.info("Constraint violation: %s", getattr(exc, "orig", exc))
            raise conflict() from exc
        except SQLAlchemyError as exc:
            logger.error("Database error: %s", getattr(exc, "orig", exc))
            raise StorageError() from exc

    def list_users(self) -> list[UserRecord]:
        with self._transaction() as session:
            return [_user_record(u) for u in crud.list_users(session)]

    def get_user(self, user_id: int) -> UserRecord | None:
        with self._transaction() as session:
            user = crud.get_user(session, user_id)
            return _user_record(user) if user else None

    def get_user_by_username(self, username: str) -> UserRecord | None:
        with self._transaction() as session:
            user = crud.get_user_by_username(session, username)
            return _user_record(user) if user else None

    def get_user_by_external_id(self, external_id: str) -> UserRecord | None:
        with self._transaction() as session:
            user = crud.get_user_by_external_id(session, external_id)
            return _user_record(user) if user else None

    def create_user(self, **fields: Any) -> UserRecord:
        with self._transaction(conflict=UsernameTaken) as session:
            if crud.get_user_by_username(session, fields.get("username", "")):
                raise UsernameTaken()
            external_id = fields.get("external_id")
            if external_id and crud.get_user_by_external_id(session, external_id):
                raise Conflict("External account is already linked")
            return _user_record(crud.create_user(session, **fields))

    def update_user(self, user_id: int, changes: dict[str, Any]) -> UserRecord:
        with self._transaction(conflict=UsernameTaken) as session:
            user = crud.get_user(session, user_id)
            if user is None:
                raise UserNotFound()
            new_name = changes.get("username")
            if new_name and new_name != user.username:
                if crud.get_user_by_username(session, new_name):
                    raise UsernameTaken()
            external_id = changes.get("external_id")
            if external_id and external_id != user.external_id:
                if crud.get_user_by_external_id(session, external_id):
                    raise Conflict("External account is already linked")
            return _user_record(crud.update_user(session, user, changes))

    def delete_user(self, user_id: int) -> None:
        with self._transaction() as session:
            user = crud.get_user(session, user_id)
            if user is None:
                raise UserNotFound()
            crud.delete_user(session, user)

    def list_events(self) -> list[EventRecord]:
        with self._transaction() as session:
            return [_event_record(e) for e in crud.list_events(session)]

    def get_event(self, event_id: int) -> EventRecord | None:
        with self._transaction() as session:
            event = session.get(Event, event_id)
            return _event_record(event) if event else None

    def create_event(self, **fields: Any) -> EventRecord:
        with self._transaction() as session:
            return _event_record(crud.create_event(session, **fields))

    def update_event(self, event_id: int, changes: dict[str, Any]) -> EventRecord:
        with self._transaction() as session:
            event = session.get(Event, event_id)
            if event is None:
                raise EventNotFound()
            return _event_record(crud.update_event(session, event, changes))

    def delete_event(self, event_id: int) -> None:
        with self._transaction() as session:
            event = session.get(Event, event_id)
            if event is None:
                raise EventNotFound()
            crud.delete_event(session, event)

    def save_statuses(self, statuses: dict[int, str]) -> int:
        if not statuses:
            return 0
        with self._transaction() as session:
            return crud.set_event_statuses(session, statuses)

    def register(self, event_id: int, user_id: int) -> RegistrationRecord:
        with self._transaction(conflict=DuplicateRegistration) as session:
            registration = crud.register_for_event(
                session, event_id=event_id, user_id=user_id
            )
            return _registration_record(registration)

    def is_registered(self, event_id: int, user_id: int) -> bool:
        with self._transaction() as session:
            return (
                crud.get_registration(session, event_id=event_id, user_id=user_id)
                is not None
            )

    def list_registered_events(self, user_id: int) -> list[EventRecord]:
        with self._transaction() as session:
            return [
                _event_record(e) for e in crud.list_registered_events(session, user_id)
            ]

    def count_registrations(self, event_id: int) -> int:
        with self._transaction() as session:
            return crud.count_registrations(session, event_id)


class MemoryStore(Store):
    """Thread-safe in-process store."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: dict[int, UserRecord] = {}
        self._events: dict[int, EventRecord] = {}
        self._registrations: dict[int, RegistrationRecord] = {}
        self._user_ids = itertools.count(1)
        self._event_ids = itertools.count(1)
        self._registration_ids = itertools.count(1)

    def _username_taken(self, username: str, *, exclude: int | None = None) -> bool:
        return any(
            u.username == username and u.id != exclude for u in self._users.values()
        )

    def _external_id_taken(self, external_id: str | None, *, exclude: int | None = None) -> bool:
        if not external_id:
            return False
        return any(
            u.external_id == external_id and u.id != exclude
            for u in self._users.values()
        )

    def list_users(self) -> list[UserRecord]:
        with self._lock:
            return sorted(self._users.values(), key=lambda u: u.id)

    def get_user(self, user_id: int) -> UserRecord | None:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> UserRecord | None:
        normalized = (username or "").strip()
        with self._lock:
            return next(
                (u for u in self._users.values() if u.username == normalized), None
            )

    def get_user_by_external_id(self, external_id: str) -> UserRecord | None:
        with self._lock:
            return next(
                (u for u in self._users.values() if u.external_id == external_id),
                None,
            )

    def create_user(self, **fields: Any) -> UserRecord:
        username = fields["username"].strip()
        with self._lock:
            if self._username_taken(username):
                raise UsernameTaken()
            if self._external_id_taken(fields.get("external_id")):
                raise Conflict("External account is already linked")
            user = UserRecord(
                id=next(self._user_ids),
                username=username,
                password=fields.get("password"),
                email=fields.get("email"),
                display_name=fields.get("display_name"),
                external_id=fields.get("external_id"),
                role=fields.get("role") or "user",
                created_at=utcnow(),
            )
            self._users[user.id] = user
            return user

    def update_user(self, user_id: int, changes: dict[str, Any]) -> UserRecord:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFound()
            if "username" in changes and self._username_taken(
                changes["username"], exclude=user_id
            ):
                raise UsernameTaken()
            if self._external_id_taken(changes.get("external_id"), exclude=user_id):
                raise Conflict("External account is already linked")
            updated = replace(user, **changes)
            self._users[user_id] = updated
            return updated

    def delete_user(self, user_id: int) -> None:
        with self._lock:
            if self._users.pop(user_id, None) is None:
                raise UserNotFound()
            for reg_id, reg in list(self._registrations.items()):
                if reg.user_id != user_id:
                    continue
                del self._registrations[reg_id]
                event = self._events.get(reg.event_id)
                if event is not None:
                    self._events[event.id] = replace(
                        event, attendees=max(event.attendees - 1, 0)
                    )

    def list_events(self) -> list[EventRecord]:
        with self._lock:
            return sorted(self._events.values(), key=lambda e: (e.date, e.id))

    def get_event(self, event_id: int) -> EventRecord | None:
        with self._lock:
            return self._events.get(event_id)

    def create_event(self, **fields: Any) -> EventRecord:
        with self._lock:
            event = EventRecord(
                id=next(self._event_ids),
                title=fields["title"],
                description=fields["description"],
                date=fields["date"],
                time=fields["time"],
                location=fields["location"],
                organizer=fields["organizer"],
                category=fields["category"],
                image=fields.get("image"),
                attendees=0,
                status=fields.get("status", "upcoming"),
                created_at=utcnow(),
            )
            self._events[event.id] = event
            return event

    def update_event(self, event_id: int, changes: dict[str, Any]) -> EventRecord:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise EventNotFound()
            updated = replace(event, **changes)
            self._events[event_id] = updated
            return updated

    def delete_event(self, event_id: int) -> None:
        with self._lock:
            if self._events.pop(event_id, None) is None:
                raise EventNotFound()
            for reg_id, reg in list(self._registrations.items()):
                if reg.event_id == event_id:
                    del self._registrations[reg_id]

    def save_statuses(self, statuses: dict[int, str]) -> int:
        changed = 0
        with self._lock:
            for event_id, status in statuses.items():
                event = self._events.get(event_id)
                if event is not None and event.status != status:
                    self._events[event_id] = replace(event, status=status)
                    changed += 1
        return changed

    def register(self, event_id: int, user_id: int) -> RegistrationRecord:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise EventNotFound()
            if user_id not in self._users:
                raise UserNotFound()
            if self.is_registered(event_id, user_id):
                raise DuplicateRegistration()
            registration = RegistrationRecord(
                id=next(self._registration_ids),
                event_id=event_id,
                user_id=user_id,
                created_at=utcnow(),
            )
            self._events[event_id] = replace(event, attendees=event.attendees + 1)
            self._registrations[registration.id] = registration
            return registration

    def is_registered(self, event_id: int, user_id: int) -> bool:
        with self._lock:
            return any(
                r.event_id == event_id and r.user_id == user_id
                for r in self._registrations.values()
            )

    def list_registered_events(self, user_id: int) -> list[EventRecord]:
        with self._lock:
            event_ids = {
                r.event_id for r in self._registrations.values() if r.user_id == user_id
            }
            events = [self._events[i] for i in event_ids if i in self._events]
        return sorted(events, key=lambda e: (e.date, e.id))

    def count_registrations(self, event_id: int) -> int:
        with self._lock:
            return sum(1 for r in self._registrations.values() if r.event_id == event_id)


def build_store(app_settings) -> Store:
    """Return the store selected by ``storage_backend``."""
    if app_settings.storage_backend == "memory":
        logger.warning("Using the in-memory store; data is lost on restart")
        return MemoryStore()
    return SqlStore(database.SessionLocal)
