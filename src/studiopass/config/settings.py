# src/studiopass/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/studiopass/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `STUDIOPASS_LOG_LEVEL`, `STUDIOPASS_TIMEZONE`)
- an external YAML file via `STUDIOPASS_CONFIG_PATH`

Design rule:
- Tuning knobs (timeouts, radii, window sizes, fallback places) live in YAML, not in business logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from studiopass.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `studiopass.config`."""
    text = resources.files("studiopass.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "StudioPass"
    timezone: str = "Europe/Berlin"
    log_level: str = "INFO"


class CoordinatesSettings(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class FallbackLocationSettings(BaseModel):
    id: str
    name: str
    country: str
    coordinates: CoordinatesSettings


class LocationSettings(BaseModel):
    timeout_seconds: float = Field(10.0, gt=0)
    default_position: CoordinatesSettings = Field(
        default_factory=lambda: CoordinatesSettings(latitude=33.5138, longitude=36.2765)
    )
    region_delta: float = Field(0.1, gt=0)
    fallback_locations: list[FallbackLocationSettings] = Field(default_factory=list)


class DirectorySettings(BaseModel):
    catalog_path: str = "data/catalogs/studios.json"
    collection: str = "studios"
    default_radius_km: float = Field(50.0, gt=0)
    catalog_ttl_seconds: float = Field(600.0, ge=0)
    top_rated_default: int = Field(10, ge=1)


class CheckInSettings(BaseModel):
    collection: str = "checkIn"
    stats_window: int = Field(1000, ge=1)
    history_limit: int = Field(50, ge=1)
    studio_history_limit: int = Field(100, ge=1)
    most_visited_limit: int = Field(5, ge=1)
    stats_ttl_seconds: float = Field(600.0, ge=0)


class QrSettings(BaseModel):
    min_length: int = Field(3, ge=1)
    max_length: int = Field(500, ge=1)


class RealtimeSettings(BaseModel):
    handshake_timeout_seconds: float = Field(10.0, gt=0)


class SubscriptionSettings(BaseModel):
    collection: str = "subscriptions"
    users_collection: str = "users"
    expiring_within_days: int = Field(7, ge=0)
    subscription_ttl_seconds: float = Field(300.0, ge=0)
    user_subscriptions_ttl_seconds: float = Field(120.0, ge=0)
    active_subscription_ttl_seconds: float = Field(60.0, ge=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    checkin: CheckInSettings = Field(default_factory=CheckInSettings)
    qr: QrSettings = Field(default_factory=QrSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    subscriptions: SubscriptionSettings = Field(default_factory=SubscriptionSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("STUDIOPASS_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    timezone = os.getenv("STUDIOPASS_TIMEZONE")
    if timezone:
        data.setdefault("app", {})["timezone"] = timezone

    catalog_path = os.getenv("STUDIOPASS_CATALOG_PATH")
    if catalog_path:
        data.setdefault("directory", {})["catalog_path"] = catalog_path

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("STUDIOPASS_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
