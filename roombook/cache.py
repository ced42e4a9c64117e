"""JSON backed read-through cache for instant rendering.

Entries are ``{"timestamp": <ISO-8601 UTC>, "data": ...}`` keyed by data kind.
The cache enforces no expiry and is never consulted for conflict checks.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

ROOMS = "rooms"
BOOKINGS = "bookings"
TIME_SLOTS = "time_slots"
FIXED_SCHEDULES = "fixed_schedules"
KEYS = (ROOMS, BOOKINGS, TIME_SLOTS, FIXED_SCHEDULES)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class LocalCache:
    """Keep the last fetched value of each data kind, optionally on disk."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, Any]] = {}
        if self._path is not None:
            if self._path.parent and not self._path.parent.exists():
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._entries = self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> Dict[str, Dict[str, Any]]:
        assert self._path is not None
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            return {}
        entries: Dict[str, Dict[str, Any]] = {}
        for key, entry in payload.items():
            if key in KEYS and isinstance(entry, dict) and "data" in entry:
                entries[key] = {"timestamp": str(entry.get("timestamp") or ""), "data": entry["data"]}
        return entries

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            with self._path.open("w", encoding="utf-8") as handle:
                json.dump(self._entries, handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            logger.warning("Could not write cache file %s: %s", self._path, exc)

    @staticmethod
    def _check_key(key: str) -> None:
        if key not in KEYS:
            raise KeyError(f"Unknown cache key: {key}")

    def get_entry(self, key: str) -> Optional[Mapping[str, Any]]:
        self._check_key(key)
        with self._lock:
            entry = self._entries.get(key)
            return dict(entry) if entry is not None else None

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.get_entry(key)
        if entry is None:
            return default
        return entry["data"]

    def set(self, key: str, data: Any) -> None:
        self._check_key(key)
        with self._lock:
            self._entries[key] = {"timestamp": _utc_timestamp(), "data": data}
            self._save()

    def invalidate(self, *keys: str) -> None:
        """Drop the given kinds, or every kind when called without arguments."""

        targets = keys or KEYS
        for key in targets:
            self._check_key(key)
        with self._lock:
            for key in targets:
                self._entries.pop(key, None)
            self._save()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            if self._path is not None:
                try:
                    self._path.unlink()
                except FileNotFoundError:
                    pass


__all__ = ["BOOKINGS", "FIXED_SCHEDULES", "KEYS", "LocalCache", "ROOMS", "TIME_SLOTS"]
