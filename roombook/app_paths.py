"""Where roombook keeps its settings, OAuth token, cache and logs.

``ROOMBOOK_HOME`` wins when set (tests point it at a temporary directory);
otherwise the per-user application data folder is used.
"""
from __future__ import annotations

import os
from pathlib import Path

HOME_ENV_VAR = "ROOMBOOK_HOME"


def _base_directory() -> Path:
    explicit = os.environ.get(HOME_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser().resolve()
    for env_var in ("LOCALAPPDATA", "APPDATA"):
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "RoomBook"
    return Path.home().resolve() / ".roombook"


APP_DIR: Path = _base_directory()


def data_path(*parts: str) -> Path:
    """Return ``APP_DIR / parts``, creating the parent folder on the way."""

    target = APP_DIR.joinpath(*parts)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def cache_path(*parts: str) -> Path:
    return data_path("cache", *parts)


def logs_path(*parts: str) -> Path:
    return data_path("logs", *parts)


def credentials_path(*parts: str) -> Path:
    return data_path("credentials", *parts)


__all__ = ["APP_DIR", "HOME_ENV_VAR", "cache_path", "credentials_path", "data_path", "logs_path"]
