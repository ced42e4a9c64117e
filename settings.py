"""Application configuration helpers for roombook."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from roombook import app_paths
from roombook.errors import ConfigurationError


logger = logging.getLogger(__name__)


SETTINGS_PATH = str(app_paths.data_path("settings.json"))
DEFAULT_TOKEN_PATH = str(app_paths.credentials_path("authorized_user.json"))
DEFAULT_CACHE_PATH = str(app_paths.cache_path("roombook_cache.json"))
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# 0 is usually the first tab; 240206239 is the long-lived monthly tab of the
# shared booking workbook.
DEFAULT_PROBE_GIDS: List[str] = ["0", "240206239"]
DEFAULT_REFRESH_DELAY_SECONDS = 1.5

_ENV_OVERRIDES: Mapping[str, str] = {
    "spreadsheet_id": "ROOMBOOK_SPREADSHEET_ID",
    "client_id": "ROOMBOOK_CLIENT_ID",
    "client_secret": "ROOMBOOK_CLIENT_SECRET",
    "refresh_token": "ROOMBOOK_REFRESH_TOKEN",
    "access_token": "ROOMBOOK_ACCESS_TOKEN",
    "token_path": "ROOMBOOK_TOKEN_PATH",
}


@dataclass
class BookingSheetSettings:
    spreadsheet_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    access_token: str = ""
    token_path: str = DEFAULT_TOKEN_PATH
    token_uri: str = DEFAULT_TOKEN_URI
    probe_gids: List[str] = field(default_factory=lambda: list(DEFAULT_PROBE_GIDS))
    refresh_delay_seconds: float = DEFAULT_REFRESH_DELAY_SECONDS
    cache_path: Optional[str] = DEFAULT_CACHE_PATH

    def require_spreadsheet_id(self) -> str:
        spreadsheet_id = (self.spreadsheet_id or "").strip()
        if not spreadsheet_id:
            raise ConfigurationError(
                "A spreadsheet id is required.\n"
                "Make sure:\n"
                f"1. {_ENV_OVERRIDES['spreadsheet_id']} is set, or\n"
                f"2. \"spreadsheet_id\" is filled in {SETTINGS_PATH}\n"
                "3. The value is the id from the sheet URL, not the full URL"
            )
        return spreadsheet_id

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "access_token": self.access_token,
            "token_path": self.token_path,
            "token_uri": self.token_uri,
            "probe_gids": list(self.probe_gids),
            "refresh_delay_seconds": self.refresh_delay_seconds,
            "cache_path": self.cache_path,
        }


def _default_payload() -> Dict[str, object]:
    return BookingSheetSettings().to_json()


def _write_json(path: str, payload: Mapping[str, object]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


def _ensure_settings_file(path: str) -> Dict[str, object]:
    default_settings = _default_payload()
    if not os.path.exists(path):
        _write_json(path, default_settings)
        logger.info("Created default settings file at %s", path)
        return default_settings

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return default_settings

    merged: Dict[str, object] = dict(default_settings)
    if not isinstance(data, Mapping):
        return merged
    for key, value in data.items():
        if key == "probe_gids" and isinstance(value, list):
            gids = [str(entry).strip() for entry in value if str(entry).strip()]
            merged[key] = gids or default_settings[key]
        elif key == "refresh_delay_seconds":
            try:
                merged[key] = max(0.0, min(30.0, float(value)))
            except (TypeError, ValueError):
                merged[key] = default_settings[key]
        elif key == "cache_path" and value is None:
            merged[key] = None
        elif isinstance(value, str):
            merged[key] = value
    return merged


def _apply_environment(data: Dict[str, object]) -> Dict[str, object]:
    for key, env_var in _ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None and value.strip():
            data[key] = value.strip()
    return data


def load_settings(path: str = SETTINGS_PATH) -> BookingSheetSettings:
    data = _apply_environment(_ensure_settings_file(path))
    cache_path = data.get("cache_path")
    return BookingSheetSettings(
        spreadsheet_id=str(data.get("spreadsheet_id", "")),
        client_id=str(data.get("client_id", "")),
        client_secret=str(data.get("client_secret", "")),
        refresh_token=str(data.get("refresh_token", "")),
        access_token=str(data.get("access_token", "")),
        token_path=str(data.get("token_path", DEFAULT_TOKEN_PATH)),
        token_uri=str(data.get("token_uri", DEFAULT_TOKEN_URI)),
        probe_gids=list(data.get("probe_gids", DEFAULT_PROBE_GIDS)),  # type: ignore[arg-type]
        refresh_delay_seconds=float(data.get("refresh_delay_seconds", DEFAULT_REFRESH_DELAY_SECONDS)),  # type: ignore[arg-type]
        cache_path=None if cache_path is None else str(cache_path),
    )


def save_settings(settings: BookingSheetSettings, path: str = SETTINGS_PATH) -> None:
    _write_json(path, settings.to_json())


__all__ = [
    "BookingSheetSettings",
    "DEFAULT_PROBE_GIDS",
    "DEFAULT_REFRESH_DELAY_SECONDS",
    "DEFAULT_TOKEN_PATH",
    "SETTINGS_PATH",
    "load_settings",
    "save_settings",
]
