"""User account management."""

from __future__ import annotations

import logging
from typing import Any

from .auth import Principal, ensure_admin, hash_password
from .errors import ValidationError
from .records import ROLES, USER_FIELDS, UserRecord
from .store import Store

logger = logging.getLogger("uvicorn.error")

PROFILE_FIELDS = {"email", "display_name", "password"}


def _prepare(fields: dict[str, Any], *, allowed: set[str] | tuple[str, ...]) -> dict[str, Any]:
    data = {k: v for k, v in fields.items() if k in allowed}
    if "role" in data and data["role"] not in ROLES:
        raise ValidationError(
            "Invalid user data",
            errors=[{"loc": ["role"], "msg": f"Role must be one of {sorted(ROLES)}"}],
        )
    if "username" in data:
        data["username"] = (data["username"] or "").strip()
        if not data["username"]:
            raise ValidationError(
                "Invalid user data",
                errors=[{"loc": ["username"], "msg": "Username cannot be blank"}],
            )
    if data.get("password"):
        data["password"] = hash_password(data["password"])
    else:
        # An empty password leaves the stored one untouched.
        data.pop("password", None)
    return data


def signup(
    store: Store,
    *,
    username: str,
    password: str,
    email: str | None = None,
    display_name: str | None = None,
) -> UserRecord:
    """Create a regular user account with a local password."""
    user = store.create_user(
        **_prepare(
            {
                "username": username,
                "password": password,
                "email": email,
                "display_name": display_name,
                "role": "user",
            },
            allowed=USER_FIELDS,
        )
    )
    logger.info("User %s signed up", user.username)
    return user


def list_users(store: Store, principal: Principal) -> list[UserRecord]:
    ensure_admin(principal)
    return store.list_users()


def create_user(store: Store, principal: Principal, fields: dict[str, Any]) -> UserRecord:
    ensure_admin(principal)
    data = _prepare(fields, allowed=USER_FIELDS)
    data.setdefault("role", "user")
    user = store.create_user(**data)
    logger.info("User %s created by admin %s", user.username, principal.user_id)
    return user


def update_user(
    store: Store, principal: Principal, user_id: int, changes: dict[str, Any]
) -> UserRecord:
    ensure_admin(principal)
    data = _prepare(changes, allowed=USER_FIELDS)
    user = store.update_user(user_id, data)
    logger.info("User %s updated by admin %s", user_id, principal.user_id)
    return user


def delete_user(store: Store, principal: Principal, user_id: int) -> None:
    ensure_admin(principal)
    store.delete_user(user_id)
    logger.info("User %s deleted by admin %s", user_id, principal.user_id)


def update_profile(
    store: Store, principal: Principal, changes: dict[str, Any]
) -> UserRecord:
    """Self-service update; role and username are not editable here."""
    data = _prepare(changes, allowed=PROFILE_FIELDS)
    return store.update_user(principal.user_id, data)
