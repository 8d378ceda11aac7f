"""Plain records passed between the stores, services and API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

EVENT_FIELDS = (
    "title",
    "description",
    "date",
    "time",
    "location",
    "organizer",
    "category",
    "image",
)
USER_FIELDS = (
    "username",
    "password",
    "email",
    "display_name",
    "external_id",
    "role",
)
ROLES = {"user", "admin"}


@dataclass(frozen=True)
class EventRecord:
    id: int
    title: str
    description: str
    date: date
    time: str
    location: str
    organizer: str
    category: str
    image: str | None
    attendees: int
    status: str
    created_at: datetime


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    password: str | None
    email: str | None
    display_name: str | None
    external_id: str | None
    role: str
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class RegistrationRecord:
    id: int
    event_id: int
    user_id: int
    created_at: datetime
