from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv


def _load_env() -> None:
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path, override=False)


_load_env()


def _get_env(key: str, default: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value


def _get_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_list(key: str) -> list[str]:
    value = os.getenv(key)
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    database_url: str = field(default_factory=lambda: _get_env("DATABASE_URL", "sqlite:///./artstudio.db"))
    app_url: str = field(default_factory=lambda: _get_env("APP_URL", "http://localhost:8000"))

    bridge_version: str = field(default_factory=lambda: _get_env("BRIDGE_VERSION", "1.0.0"))
    bridge_handshake_timeout_seconds: float = field(
        default_factory=lambda: _get_float("BRIDGE_HANDSHAKE_TIMEOUT_SECONDS", 8.0)
    )
    bridge_request_timeout_seconds: float = field(
        default_factory=lambda: _get_float("BRIDGE_REQUEST_TIMEOUT_SECONDS", 15.0)
    )
    bridge_max_pending_requests: int = field(default_factory=lambda: _get_int("BRIDGE_MAX_PENDING_REQUESTS", 32))
    bridge_allowed_origins: list[str] = field(default_factory=lambda: _get_list("BRIDGE_ALLOWED_ORIGINS"))
    resize_margin_px: int = field(default_factory=lambda: _get_int("RESIZE_MARGIN_PX", 40))

    fulfillment_api_base: str = field(
        default_factory=lambda: _get_env("FULFILLMENT_API_BASE", "https://api.printify.com/v1")
    )
    fulfillment_timeout_seconds: float = field(default_factory=lambda: _get_float("FULFILLMENT_TIMEOUT_SECONDS", 30.0))
    upload_max_retries: int = field(default_factory=lambda: _get_int("UPLOAD_MAX_RETRIES", 3))
    upload_base_delay: float = field(default_factory=lambda: _get_float("UPLOAD_BASE_DELAY", 1.0))
    mockup_poll_attempts: int = field(default_factory=lambda: _get_int("MOCKUP_POLL_ATTEMPTS", 6))
    mockup_poll_delay: float = field(default_factory=lambda: _get_float("MOCKUP_POLL_DELAY", 2.0))

    storage_dir: str = field(default_factory=lambda: _get_env("STORAGE_DIR", "artstudio-objects"))
    objects_url_prefix: str = field(default_factory=lambda: _get_env("OBJECTS_URL_PREFIX", "/objects"))
    storage_max_retries: int = field(default_factory=lambda: _get_int("STORAGE_MAX_RETRIES", 3))

    image_generator_url: str | None = field(default_factory=lambda: _get_env("IMAGE_GENERATOR_URL"))
    image_generator_key: str | None = field(default_factory=lambda: _get_env("IMAGE_GENERATOR_KEY"))
    image_generator_timeout_seconds: float = field(
        default_factory=lambda: _get_float("IMAGE_GENERATOR_TIMEOUT_SECONDS", 120.0)
    )

    cors_allow_origins: list[str] = field(default_factory=lambda: _get_list("CORS_ALLOW_ORIGINS"))
    cors_allow_credentials: bool = field(default_factory=lambda: _get_bool("CORS_ALLOW_CREDENTIALS", False))
    generation_rate_limit: int = field(default_factory=lambda: _get_int("GENERATION_RATE_LIMIT", 100))
    mockup_rate_limit: int = field(default_factory=lambda: _get_int("MOCKUP_RATE_LIMIT", 100))
    rate_limit_window_seconds: float = field(default_factory=lambda: _get_float("RATE_LIMIT_WINDOW_SECONDS", 3600.0))

    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO") or "INFO")
    log_dir: str | None = field(default_factory=lambda: _get_env("LOG_DIR"))


_settings: Settings | None = None
_runtime_overrides: dict[str, Any] = {}


def _apply_runtime_overrides(settings: Settings) -> None:
    if not _runtime_overrides:
        return
    for key, value in _runtime_overrides.items():
        if value is None:
            continue
        if hasattr(settings, key):
            setattr(settings, key, value)


def update_runtime_overrides(overrides: dict[str, Any]) -> None:
    if not overrides:
        return
    for key, value in overrides.items():
        if value is None:
            continue
        _runtime_overrides[key] = value
    if _settings is not None:
        _apply_runtime_overrides(_settings)


def clear_runtime_overrides() -> None:
    _runtime_overrides.clear()


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    _apply_runtime_overrides(_settings)
    return _settings


def refresh_settings() -> Settings:
    """Rebuild settings from environment variables."""
    global _settings
    _settings = Settings()
    _apply_runtime_overrides(_settings)
    return _settings


__all__ = [
    "Settings",
    "get_settings",
    "refresh_settings",
    "update_runtime_overrides",
    "clear_runtime_overrides",
]
