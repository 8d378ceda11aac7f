"""Global configuration for EventBoard."""

from __future__ import annotations

import logging
import os
import secrets
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger("uvicorn.error")

DEFAULTS: dict[str, Any] = {
    "storage_backend": "sql",
    "session_secret": "",
    "session_max_age_hours": 24,
    "secure_cookies": False,
    "default_event_duration_hours": 2,
    "enable_scheduler": False,
    "status_refresh_minutes": 15,
    "app_host": "0.0.0.0",
    "app_port": 5000,
    "cors_origins": "",
    "oauth_provider": "42",
    "oauth_client_id": "",
    "oauth_client_secret": "",
    "oauth_authorize_url": "https://api.intra.42.fr/oauth/authorize",
    "oauth_token_url": "https://api.intra.42.fr/oauth/token",
    "oauth_profile_url": "https://api.intra.42.fr/v2/me",
    "oauth_callback_url": "http://localhost:5000/api/auth/42/callback",
    "oauth_scope": "public",
    "oauth_failure_redirect": "/login",
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "storage_backend": str,
    "session_secret": str,
    "session_max_age_hours": int,
    "secure_cookies": bool,
    "default_event_duration_hours": float,
    "enable_scheduler": bool,
    "status_refresh_minutes": int,
    "app_host": str,
    "app_port": int,
    "cors_origins": str,
    "oauth_provider": str,
    "oauth_client_id": str,
    "oauth_client_secret": str,
    "oauth_authorize_url": str,
    "oauth_token_url": str,
    "oauth_profile_url": str,
    "oauth_callback_url": str,
    "oauth_scope": str,
    "oauth_failure_redirect": str,
}

STORAGE_BACKENDS = {"sql", "memory"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    storage_backend: str
    session_secret: str
    session_max_age_hours: int
    secure_cookies: bool
    default_event_duration_hours: float
    enable_scheduler: bool
    status_refresh_minutes: int
    app_host: str
    app_port: int
    cors_origins: str
    oauth_provider: str
    oauth_client_id: str
    oauth_client_secret: str
    oauth_authorize_url: str
    oauth_token_url: str
    oauth_profile_url: str
    oauth_callback_url: str
    oauth_scope: str
    oauth_failure_redirect: str
    config_path: Path

    @property
    def session_max_age(self) -> timedelta:
        return timedelta(hours=self.session_max_age_hours)

    @property
    def default_event_duration(self) -> timedelta:
        return timedelta(hours=self.default_event_duration_hours)

    @property
    def allowed_origins(self) -> list[str]:
        return [
            origin.strip() for origin in self.cors_origins.split(",") if origin.strip()
        ]

    @property
    def oauth_enabled(self) -> bool:
        return bool(self.oauth_client_id and self.oauth_client_secret)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"EVENTBOARD_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = (
        Path(database_path) if database_path else resolved_data / "eventboard.db"
    )
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("EVENTBOARD_BASE_DIR", Path.cwd()))
    env_config = os.getenv("EVENTBOARD_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "eventboard.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("EVENTBOARD_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("EVENTBOARD_DB", toml_config.get("database_path")),
    )

    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    backend = values["storage_backend"].strip().lower()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unknown storage backend {backend!r}")
    values["storage_backend"] = backend
    if not values["session_secret"]:
        logger.warning(
            "No session secret configured; generated a per-process key. "
            "Sessions will not survive a restart."
        )
        values["session_secret"] = secrets.token_urlsafe(32)

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **values,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    """Return the effective settings with secrets masked."""
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "config_path": str(settings.config_path),
    }
    for key in DEFAULTS:
        payload[key] = getattr(settings, key)
    for secret_key in ("session_secret", "oauth_client_secret"):
        if payload[secret_key]:
            payload[secret_key] = "********"
    return payload


settings = load_settings()
