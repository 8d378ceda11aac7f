"""CRUD helpers for users, events and registrations."""

from __future__ import annotations

from datetime import date
from typing import Any, Sequence

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from .errors import DuplicateRegistration, EventNotFound, UserNotFound
from .models import Event, EventAttendee, User
from .utils import utcnow


def get_user(session: Session, user_id: int) -> User | None:
    return session.get(User, user_id)


def get_user_by_username(session: Session, username: str) -> User | None:
    normalized = (username or "").strip()
    if not normalized:
        return None
    stmt = select(User).where(User.username == normalized)
    return session.scalars(stmt).first()


def get_user_by_external_id(session: Session, external_id: str) -> User | None:
    stmt = select(User).where(User.external_id == external_id)
    return session.scalars(stmt).first()


def list_users(session: Session) -> Sequence[User]:
    return session.scalars(select(User).order_by(User.id.asc())).all()


def create_user(
    session: Session,
    *,
    username: str,
    password: str | None = None,
    email: str | None = None,
    display_name: str | None = None,
    external_id: str | None = None,
    role: str = "user",
) -> User:
    """Create and persist a new user; ``password`` must already be hashed."""
    user = User(
        username=username.strip(),
        password=password,
        email=email,
        display_name=display_name,
        external_id=external_id,
        role=role,
        created_at=utcnow(),
    )
    session.add(user)
    session.flush()
    return user


def update_user(session: Session, user: User, changes: dict[str, Any]) -> User:
    for key, value in changes.items():
        setattr(user, key, value)
    session.add(user)
    session.flush()
    return user


def delete_user(session: Session, user: User) -> None:
    """Delete a user, their registrations, and fix affected attendee counts."""
    event_ids = session.scalars(
        select(EventAttendee.event_id).where(EventAttendee.user_id == user.id)
    ).all()
    if event_ids:
        session.execute(
            update(Event)
            .where(Event.id.in_(event_ids))
            .values(
                attendees=case((Event.attendees > 0, Event.attendees - 1), else_=0)
            )
        )
    session.execute(delete(EventAttendee).where(EventAttendee.user_id == user.id))
    session.delete(user)
    session.flush()


def list_events(session: Session) -> Sequence[Event]:
    stmt = select(Event).order_by(Event.date.asc(), Event.id.asc())
    return session.scalars(stmt).all()


def create_event(
    session: Session,
    *,
    title: str,
    description: str,
    date: date,
    time: str,
    location: str,
    organizer: str,
    category: str,
    image: str | None = None,
    status: str = "upcoming",
) -> Event:
    """Create and persist a new event with no attendees."""
    event = Event(
        title=title,
        description=description,
        date=date,
        time=time,
        location=location,
        organizer=organizer,
        category=category,
        image=image,
        attendees=0,
        status=status,
        created_at=utcnow(),
    )
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event: Event, changes: dict[str, Any]) -> Event:
    """Apply a partial update; only keys present in ``changes`` are touched."""
    for key, value in changes.items():
        setattr(event, key, value)
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event: Event) -> None:
    session.execute(delete(EventAttendee).where(EventAttendee.event_id == event.id))
    session.delete(event)
    session.flush()


def set_event_statuses(session: Session, statuses: dict[int, str]) -> int:
    """Rewrite cached statuses; returns the number of rows changed."""
    changed = 0
    for event_id, status in statuses.items():
        result = session.execute(
            update(Event)
            .where(Event.id == event_id, Event.status != status)
            .values(status=status)
        )
        changed += result.rowcount or 0
    return changed


def get_registration(
    session: Session, *, event_id: int, user_id: int
) -> EventAttendee | None:
    stmt = select(EventAttendee).where(
        EventAttendee.event_id == event_id, EventAttendee.user_id == user_id
    )
    return session.scalars(stmt).first()


def register_for_event(session: Session, *, event_id: int, user_id: int) -> EventAttendee:
    """Record a registration and bump the event's attendee counter.

    Both writes happen in the caller's transaction. The existence check
    short-circuits the common duplicate case; the unique constraint on
    ``(event_id, user_id)`` catches concurrent duplicates at flush time.
    """
    if session.get(Event, event_id) is None:
        raise EventNotFound()
    if session.get(User, user_id) is None:
        raise UserNotFound()
    if get_registration(session, event_id=event_id, user_id=user_id):
        raise DuplicateRegistration()

    session.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(attendees=Event.attendees + 1)
    )
    registration = EventAttendee(event_id=event_id, user_id=user_id, created_at=utcnow())
    session.add(registration)
    session.flush()
    return registration


def list_registered_events(session: Session, user_id: int) -> Sequence[Event]:
    stmt = (
        select(Event)
        .join(EventAttendee, EventAttendee.event_id == Event.id)
        .where(EventAttendee.user_id == user_id)
        .order_by(Event.date.asc(), Event.id.asc())
    )
    return session.scalars(stmt).all()


def count_registrations(session: Session, event_id: int) -> int:
    stmt = select(func.count()).select_from(EventAttendee).where(
        EventAttendee.event_id == event_id
    )
    return session.scalar(stmt) or 0
