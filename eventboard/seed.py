"""Development helpers for populating demo accounts and fake events."""

from __future__ import annotations

import random
from datetime import date, timedelta

from faker import Faker

from .auth import hash_password
from .errors import Conflict
from .status import resolve_status
from .store import Store
from .utils import localnow

DEMO_ACCOUNTS = (
    {"username": "admin", "password": "admin123", "role": "admin"},
    {"username": "user", "password": "user123", "role": "user"},
)

_categories = [
    "Workshop",
    "Meetup",
    "Conference",
    "Hackathon",
    "Social",
    "Talk",
]
_event_types = [
    "Mixer",
    "Hangout",
    "Workshop",
    "Field Trip",
    "Meet & Greet",
    "Dinner",
    "Discussion",
]


def ensure_demo_accounts(store: Store) -> int:
    """Create the demo admin and user accounts when missing."""
    created = 0
    for account in DEMO_ACCOUNTS:
        if store.get_user_by_username(account["username"]) is not None:
            continue
        store.create_user(
            username=account["username"],
            password=hash_password(account["password"]),
            email=f"{account['username']}@example.com",
            display_name=account["username"].title(),
            role=account["role"],
        )
        created += 1
    return created


def _random_time(rng: random.Random) -> str:
    start_hour = rng.randint(8, 19)
    start = f"{start_hour:02d}:{rng.choice(['00', '15', '30', '45'])}"
    if rng.random() < 0.5:
        return start
    end_hour = min(start_hour + rng.randint(1, 3), 23)
    return f"{start} - {end_hour:02d}:{rng.choice(['00', '30'])}"


def seed_fake_data(
    store: Store,
    *,
    event_count: int = 12,
    days_back: int = 14,
    days_ahead: int = 30,
    max_registrations_per_event: int = 4,
    today: date | None = None,
    seed: int | None = None,
) -> dict[str, int]:
    """Populate ``store`` with demo accounts, fake events and registrations."""
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if days_back < 0 or days_ahead < 0:
        raise ValueError("day ranges must be >= 0")
    if max_registrations_per_event < 0:
        raise ValueError("max_registrations_per_event must be >= 0")

    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        Faker.seed(seed)
    now = localnow()
    today = today or now.date()
    stats = {"users": ensure_demo_accounts(store), "events": 0, "registrations": 0}

    attendees = []
    for _ in range(max_registrations_per_event):
        try:
            user = store.create_user(
                username=fake.unique.user_name(),
                password=hash_password(fake.password(length=12)),
                email=fake.email(),
                display_name=fake.name(),
                role="user",
            )
        except Conflict:
            continue
        attendees.append(user)
        stats["users"] += 1

    for _ in range(event_count):
        event_date = today + timedelta(days=rng.randint(-days_back, days_ahead))
        event_time = _random_time(rng)
        event = store.create_event(
            title=f"{fake.city()} {rng.choice(_event_types)}",
            description=fake.paragraph(nb_sentences=3),
            date=event_date,
            time=event_time,
            location=fake.address().replace("\n", ", "),
            organizer=fake.company(),
            category=rng.choice(_categories),
            image=None,
            status=resolve_status(event_date, event_time, now).value,
        )
        stats["events"] += 1
        count = rng.randint(0, len(attendees))
        for user in rng.sample(attendees, count):
            try:
                store.register(event.id, user.id)
            except Conflict:
                continue
            stats["registrations"] += 1
    return stats
