"""Session identity, password hashing and the route guards."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

from fastapi import Depends, Request

from .errors import AuthenticationError, AuthorizationError
from .records import UserRecord
from .store import Store

logger = logging.getLogger("uvicorn.error")

SESSION_USER_KEY = "user_id"
INVALID_CREDENTIALS = "Invalid username or password"

# Changing any scrypt parameter invalidates every stored password.
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LENGTH = 64


@dataclass(frozen=True)
class Principal:
    """The resolved identity of the caller."""

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_user(cls, user: UserRecord) -> "Principal":
        return cls(user_id=user.id, role=user.role)


def _derive(password: str, salt: str) -> str:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LENGTH,
    ).hex()


def hash_password(password: str) -> str:
    """Return ``salt:hash`` for storage."""
    salt = secrets.token_hex(16)
    return f"{salt}:{_derive(password, salt)}"


def verify_password(password: str, stored: str | None) -> bool:
    """Check ``password`` against a stored ``salt:hash``; fails closed."""
    if not stored or not password:
        return False
    salt, sep, expected = stored.partition(":")
    if not sep or not salt or not expected:
        return False
    return hmac.compare_digest(_derive(password, salt), expected)


def authenticate_local(store: Store, username: str, password: str) -> UserRecord:
    """Return the user for a username/password pair.

    Unknown users, password-less (OAuth-only) users and wrong passwords all
    raise the same error.
    """
    user = store.get_user_by_username(username)
    if user is None or not verify_password(password, user.password):
        logger.info("Failed local login for %r", username)
        raise AuthenticationError(INVALID_CREDENTIALS)
    logger.info("User %s logged in", user.username)
    return user


def ensure_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise AuthorizationError()


def login_session(request: Request, user: UserRecord) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id


def logout_session(request: Request) -> None:
    request.session.clear()


def get_store(request: Request) -> Store:
    return request.app.state.store


def current_user(
    request: Request, store: Store = Depends(get_store)
) -> UserRecord | None:
    """Return the user bound to the session, dropping sessions for deleted users."""
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        return None
    user = store.get_user(int(user_id))
    if user is None:
        request.session.pop(SESSION_USER_KEY, None)
    return user


def optional_principal(
    user: UserRecord | None = Depends(current_user),
) -> Principal | None:
    return Principal.from_user(user) if user else None


def require_authenticated(
    principal: Principal | None = Depends(optional_principal),
) -> Principal:
    if principal is None:
        raise AuthenticationError()
    return principal


def require_admin(principal: Principal = Depends(require_authenticated)) -> Principal:
    ensure_admin(principal)
    return principal
