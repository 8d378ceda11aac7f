from __future__ import annotations

from datetime import timedelta

import pytest

from eventboard.config import load_settings, settings_as_dict
from eventboard.oauth import providers_from_settings
from eventboard.store import MemoryStore, SqlStore, build_store


@pytest.fixture()
def base_dir(monkeypatch, tmp_path):
    for key in ("EVENTBOARD_CONFIG", "EVENTBOARD_DATA_DIR", "EVENTBOARD_DB"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("EVENTBOARD_BASE_DIR", str(tmp_path))
    return tmp_path


def test_defaults_without_config_file(base_dir):
    loaded = load_settings()

    assert loaded.storage_backend == "sql"
    assert loaded.database_path == base_dir / "data" / "eventboard.db"
    assert loaded.data_dir.is_dir()
    assert loaded.default_event_duration == timedelta(hours=2)
    assert loaded.session_secret
    assert not loaded.oauth_enabled


def test_toml_values_are_layered_under_environment(base_dir, monkeypatch):
    (base_dir / "eventboard.toml").write_text(
        'app_port = 8080\nsession_secret = "from-file"\nenable_scheduler = true\n'
        'cors_origins = "https://a.example, https://b.example"\n'
    )
    monkeypatch.setenv("EVENTBOARD_APP_PORT", "9090")

    loaded = load_settings()

    assert loaded.app_port == 9090
    assert loaded.session_secret == "from-file"
    assert loaded.enable_scheduler is True
    assert loaded.allowed_origins == ["https://a.example", "https://b.example"]


def test_boolean_environment_values(base_dir, monkeypatch):
    monkeypatch.setenv("EVENTBOARD_SECURE_COOKIES", "yes")
    assert load_settings().secure_cookies is True
    monkeypatch.setenv("EVENTBOARD_SECURE_COOKIES", "maybe")
    with pytest.raises(ValueError):
        load_settings()


def test_unknown_storage_backend_is_rejected(base_dir, monkeypatch):
    monkeypatch.setenv("EVENTBOARD_STORAGE_BACKEND", "redis")
    with pytest.raises(ValueError):
        load_settings()


def test_build_store_follows_backend(base_dir, monkeypatch):
    assert isinstance(build_store(load_settings()), SqlStore)
    monkeypatch.setenv("EVENTBOARD_STORAGE_BACKEND", "memory")
    assert isinstance(build_store(load_settings()), MemoryStore)


def test_oauth_provider_requires_credentials(base_dir, monkeypatch):
    assert providers_from_settings(load_settings()) == {}
    monkeypatch.setenv("EVENTBOARD_OAUTH_CLIENT_ID", "id")
    monkeypatch.setenv("EVENTBOARD_OAUTH_CLIENT_SECRET", "secret")
    providers = providers_from_settings(load_settings())
    assert list(providers) == ["42"]
    assert providers["42"].client_secret == "secret"


def test_settings_as_dict_masks_secrets(base_dir, monkeypatch):
    monkeypatch.setenv("EVENTBOARD_SESSION_SECRET", "super-secret")
    payload = settings_as_dict(load_settings())
    assert payload["session_secret"] == "********"
    assert payload["oauth_client_secret"] == ""
    assert payload["database_path"].endswith("eventboard.db")
