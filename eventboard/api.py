"""FastAPI application for EventBoard."""

from __future__ import annotations

import datetime as dt
import logging
import re
import secrets
import tomllib
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Callable, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from . import events as catalog
from . import users as accounts
from .auth import (
    Principal,
    authenticate_local,
    get_store,
    login_session,
    logout_session,
    current_user,
    optional_principal,
    require_admin,
    require_authenticated,
)
from .config import Settings, settings as default_settings
from .errors import Conflict, EventBoardError, NotFound, ValidationError
from .oauth import OAuthError, OAuthProvider, link_or_create_user, providers_from_settings
from .records import EventRecord, RegistrationRecord, UserRecord
from .scheduler import start_scheduler, stop_scheduler
from .status import EventStatus
from .storage import init_db
from .store import SqlStore, Store, build_store
from .utils import isoformat_or_none, localnow

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

OAUTH_STATE_KEY = "oauth_state"
_email_pattern = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventboard")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


# -------- Payloads --------


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _check_email(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if not _email_pattern.match(cleaned):
        raise ValueError("Please enter a valid email address")
    return cleaned


class EventCreatePayload(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    description: str = Field(..., min_length=1)
    date: dt.date = Field(..., description="ISO calendar date")
    time: str = Field(
        ..., min_length=1, max_length=64, description='"HH:MM" or "HH:MM - HH:MM"'
    )
    location: str = Field(..., min_length=1, max_length=255)
    organizer: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=64)
    image: str | None = Field(None, max_length=1024)


class EventUpdatePayload(BaseModel):
    title: str | None = Field(None, min_length=3, max_length=255)
    description: str | None = Field(None, min_length=1)
    date: dt.date | None = None
    time: str | None = Field(None, min_length=1, max_length=64)
    location: str | None = Field(None, min_length=1, max_length=255)
    organizer: str | None = Field(None, min_length=1, max_length=255)
    category: str | None = Field(None, min_length=1, max_length=64)
    image: str | None = Field(None, max_length=1024)

    @field_validator(
        "title",
        "description",
        "date",
        "time",
        "location",
        "organizer",
        "category",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class SignupPayload(BaseModel):
    username: str = Field(..., min_length=3, max_length=120)
    password: str = Field(..., min_length=6)
    email: str | None = None
    display_name: str | None = Field(
        None, validation_alias=AliasChoices("display_name", "displayName")
    )

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value):
        return _check_email(value)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value):
        return _strip(value)


class LoginPayload(BaseModel):
    username: str
    password: str


class UserCreatePayload(SignupPayload):
    password: str | None = Field(None, min_length=6)
    role: Literal["user", "admin"] = "user"


class UserUpdatePayload(BaseModel):
    username: str | None = Field(None, min_length=3, max_length=120)
    password: str | None = Field(None, min_length=6)
    email: str | None = None
    display_name: str | None = Field(
        None, validation_alias=AliasChoices("display_name", "displayName")
    )
    role: Literal["user", "admin"] | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value):
        return _check_email(value)

    @field_validator("password", mode="before")
    @classmethod
    def blank_password(cls, value):
        return _blank_to_none(value)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value):
        return _strip(value)

    @field_validator("username", "role", mode="before")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class ProfileUpdatePayload(BaseModel):
    password: str | None = Field(None, min_length=6)
    email: str | None = None
    display_name: str | None = Field(
        None, validation_alias=AliasChoices("display_name", "displayName")
    )

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value):
        return _check_email(value)

    @field_validator("password", mode="before")
    @classmethod
    def blank_password(cls, value):
        return _blank_to_none(value)


# -------- Serializers --------


def _serialize_event(event: EventRecord, *, registered: bool | None = None):
    payload = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "date": event.date.isoformat(),
        "time": event.time,
        "location": event.location,
        "organizer": event.organizer,
        "category": event.category,
        "image": event.image,
        "attendees": event.attendees,
        "status": event.status,
        "created_at": isoformat_or_none(event.created_at),
    }
    if registered is not None:
        payload["registered"] = registered
    return payload


def _serialize_user(user: UserRecord):
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "role": user.role,
        "oauth_linked": user.external_id is not None,
        "created_at": isoformat_or_none(user.created_at),
    }


def _serialize_registration(registration: RegistrationRecord):
    return {
        "id": registration.id,
        "event_id": registration.event_id,
        "user_id": registration.user_id,
        "created_at": isoformat_or_none(registration.created_at),
    }


# -------- Dependencies --------


def get_now(request: Request) -> dt.datetime:
    return request.app.state.clock()


def get_duration(request: Request) -> dt.timedelta:
    return request.app.state.settings.default_event_duration


def _schedule_write_back(background_tasks: BackgroundTasks, store: Store, stale) -> None:
    if stale:
        background_tasks.add_task(catalog.write_back_statuses, store, stale)


def _provider(request: Request, name: str) -> OAuthProvider:
    provider = request.app.state.oauth_providers.get(name)
    if provider is None:
        raise NotFound("Unknown authentication provider")
    return provider


router = APIRouter(prefix="/api")


@router.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


# -------- Events --------


@router.get("/events")
def api_list_events(
    background_tasks: BackgroundTasks,
    status: EventStatus | None = Query(None),
    q: str | None = Query(None, max_length=200),
    store: Store = Depends(get_store),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    events, stale = catalog.list_events(
        store, now=now, duration=duration, status=status, query=q
    )
    _schedule_write_back(background_tasks, store, stale)
    return {"events": [_serialize_event(e) for e in events]}


@router.get("/events/upcoming")
def api_upcoming_events(
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    events, stale = catalog.upcoming_events(store, now=now, duration=duration)
    _schedule_write_back(background_tasks, store, stale)
    return {"events": [_serialize_event(e) for e in events]}


@router.get("/events/past")
def api_past_events(
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    events, stale = catalog.past_events(store, now=now, duration=duration)
    _schedule_write_back(background_tasks, store, stale)
    return {"events": [_serialize_event(e) for e in events]}


@router.get("/events/{event_id}")
def api_get_event(
    event_id: int,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    principal: Principal | None = Depends(optional_principal),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    event, stale = catalog.get_event(store, event_id, now=now, duration=duration)
    _schedule_write_back(background_tasks, store, stale)
    registered = (
        store.is_registered(event.id, principal.user_id) if principal else None
    )
    return {"event": _serialize_event(event, registered=registered)}


@router.post("/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    event = catalog.create_event(
        store, principal, payload.model_dump(), now=now, duration=duration
    )
    return {"event": _serialize_event(event)}


@router.put("/events/{event_id}")
def api_update_event(
    event_id: int,
    payload: EventUpdatePayload,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    event, stale = catalog.update_event(
        store,
        principal,
        event_id,
        payload.model_dump(exclude_unset=True),
        now=now,
        duration=duration,
    )
    _schedule_write_back(background_tasks, store, stale)
    return {"event": _serialize_event(event)}


@router.delete("/events/{event_id}")
def api_delete_event(
    event_id: int,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    catalog.delete_event(store, principal, event_id)
    return {"success": True}


@router.post("/events/{event_id}/register", status_code=201)
def api_register_for_event(
    event_id: int,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_authenticated),
):
    registration = catalog.register(store, principal, event_id)
    return {"registration": _serialize_registration(registration)}


@router.get("/user/registrations")
def api_my_registrations(
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_authenticated),
    now: dt.datetime = Depends(get_now),
    duration: dt.timedelta = Depends(get_duration),
):
    events, stale = catalog.list_for_user(store, principal, now=now, duration=duration)
    _schedule_write_back(background_tasks, store, stale)
    return {"events": [_serialize_event(e, registered=True) for e in events]}


@router.put("/user/profile")
def api_update_profile(
    payload: ProfileUpdatePayload,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_authenticated),
):
    user = accounts.update_profile(
        store, principal, payload.model_dump(exclude_unset=True)
    )
    return {"user": _serialize_user(user)}


# -------- Users (admin) --------


@router.get("/users")
def api_list_users(
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    return {"users": [_serialize_user(u) for u in accounts.list_users(store, principal)]}


@router.post("/users", status_code=201)
def api_create_user(
    payload: UserCreatePayload,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    user = accounts.create_user(store, principal, payload.model_dump())
    return {"user": _serialize_user(user)}


@router.put("/users/{user_id}")
def api_update_user(
    user_id: int,
    payload: UserUpdatePayload,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    user = accounts.update_user(
        store, principal, user_id, payload.model_dump(exclude_unset=True)
    )
    return {"user": _serialize_user(user)}


@router.delete("/users/{user_id}")
def api_delete_user(
    user_id: int,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    accounts.delete_user(store, principal, user_id)
    return {"success": True}


# -------- Auth --------


@router.post("/auth/login")
def api_login(
    payload: LoginPayload, request: Request, store: Store = Depends(get_store)
):
    user = authenticate_local(store, payload.username, payload.password)
    login_session(request, user)
    return {"user": _serialize_user(user)}


@router.post("/auth/signup", status_code=201)
def api_signup(
    payload: SignupPayload, request: Request, store: Store = Depends(get_store)
):
    user = accounts.signup(
        store,
        username=payload.username,
        password=payload.password,
        email=payload.email,
        display_name=payload.display_name,
    )
    login_session(request, user)
    return {"user": _serialize_user(user)}


@router.get("/auth/logout")
def api_logout(request: Request):
    logout_session(request)
    return {"success": True}


@router.get("/auth/status")
def api_auth_status(user: UserRecord | None = Depends(current_user)):
    if user is None:
        return {"is_authenticated": False}
    return {"is_authenticated": True, "user": _serialize_user(user)}


@router.get("/auth/{provider}")
def api_oauth_start(provider: str, request: Request):
    oauth = _provider(request, provider)
    state = secrets.token_urlsafe(24)
    request.session[OAUTH_STATE_KEY] = state
    return RedirectResponse(oauth.authorization_redirect(state), status_code=302)


@router.get("/auth/{provider}/callback")
def api_oauth_callback(
    provider: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    store: Store = Depends(get_store),
):
    oauth = _provider(request, provider)
    failure = RedirectResponse(
        request.app.state.settings.oauth_failure_redirect, status_code=302
    )
    expected = request.session.pop(OAUTH_STATE_KEY, None)
    if not code or not state or not expected or not secrets.compare_digest(state, expected):
        logger.warning("Rejected %s OAuth callback with missing or stale state", provider)
        return failure
    try:
        token = oauth.exchange_code(code)
        profile = oauth.fetch_profile(token)
    except OAuthError as exc:
        logger.warning("%s OAuth error: %s", provider, exc)
        return failure
    try:
        user = link_or_create_user(store, profile)
    except Conflict as exc:
        logger.warning("%s OAuth login could not be linked: %s", provider, exc.message)
        return failure
    login_session(request, user)
    return RedirectResponse("/", status_code=302)


# -------- Error handlers --------


async def eventboard_error_handler(request: Request, exc: EventBoardError):
    if exc.status_code >= 500:
        logger.error(
            "%s while handling %s %s",
            type(exc).__name__,
            request.method,
            request.url.path,
        )
    body = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    return JSONResponse(body, status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        {"detail": "Some of the fields were invalid.", "errors": errors},
        status_code=422,
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_settings: Settings = app.state.settings
    if app.state.manage_schema:
        init_db()
    if app_settings.enable_scheduler:
        start_scheduler(
            app.state.store,
            interval_minutes=app_settings.status_refresh_minutes,
            duration=app_settings.default_event_duration,
        )
    try:
        yield
    finally:
        stop_scheduler()


def create_app(
    *,
    store: Store | None = None,
    app_settings: Settings | None = None,
    oauth_providers: dict[str, OAuthProvider] | None = None,
    clock: Callable[[], dt.datetime] | None = None,
) -> FastAPI:
    """Build the application around an injected store.

    Without an explicit ``store`` the configured backend is used and, for the
    SQL backend, the schema is migrated on start-up.
    """
    app_settings = app_settings or default_settings
    manage_schema = store is None
    store = store or build_store(app_settings)
    manage_schema = manage_schema and isinstance(store, SqlStore)

    app = FastAPI(title="EventBoard", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.store = store
    app.state.manage_schema = manage_schema
    app.state.clock = clock or localnow
    app.state.oauth_providers = (
        oauth_providers
        if oauth_providers is not None
        else providers_from_settings(app_settings)
    )

    app.add_middleware(
        SessionMiddleware,
        secret_key=app_settings.session_secret,
        session_cookie="eventboard_session",
        max_age=int(app_settings.session_max_age.total_seconds()),
        same_site="lax",
        https_only=app_settings.secure_cookies,
    )
    if app_settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(EventBoardError, eventboard_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    app.include_router(router)
    return app


app = create_app()
