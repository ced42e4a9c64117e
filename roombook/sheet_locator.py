"""Resolve a calendar month to the spreadsheet tab that holds it.

Lookup order: public CSV probing of a few well-known tab ids (current month
only, no API quota), the authenticated metadata endpoint, and a last CSV
probe.  Results for the current month are cached for the month in which they
were resolved; other months are cached for the life of the locator.
"""

from __future__ import annotations

import calendar
import logging
import re
import threading
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from roombook.errors import AuthError, BookingSheetError, SheetNotFound, TransientIOError
from roombook.models import SheetTab

logger = logging.getLogger(__name__)

MONTH_NAMES: Tuple[str, ...] = tuple(name.upper() for name in calendar.month_name[1:])
READABLE_MONTH_NAMES: Tuple[str, ...] = tuple(calendar.month_name[1:])
FALLBACK_GID = "0"

_YEAR_RE = re.compile(r"(?<!\d)\d{4}(?!\d)")


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def suggested_titles(year: int, month: int) -> List[str]:
    return [f"{MONTH_NAMES[month - 1]} {year}", f"{READABLE_MONTH_NAMES[month - 1]} {year}"]


class SheetLocator:
    """Find and cache the tab id backing each month."""

    def __init__(
        self,
        client,
        *,
        probe_gids: Sequence[str] = ("0", "240206239"),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._client = client
        self._probe_gids = [str(gid) for gid in probe_gids]
        self._clock = clock or datetime.now
        self._lock = threading.Lock()
        self._current: Optional[Tuple[str, SheetTab]] = None
        self._other_months: Dict[str, SheetTab] = {}

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def clear_cache(self) -> None:
        with self._lock:
            self._current = None
            self._other_months.clear()

    def _cached(self, key: str, is_current: bool) -> Optional[SheetTab]:
        with self._lock:
            if is_current:
                if self._current and self._current[0] == key:
                    return self._current[1]
                return None
            return self._other_months.get(key)

    def _remember(self, key: str, is_current: bool, tab: SheetTab) -> SheetTab:
        with self._lock:
            if is_current:
                self._current = (key, tab)
            else:
                self._other_months[key] = tab
        return tab

    # ------------------------------------------------------------------
    # Lookup strategies
    # ------------------------------------------------------------------
    def _probe_csv(self, month_name: str) -> Optional[SheetTab]:
        for gid in self._probe_gids:
            try:
                rows = self._client.fetch_csv(gid)
            except TransientIOError as exc:
                logger.debug("CSV probe of gid %s failed: %s", gid, exc)
                continue
            first_cell = rows[0][0] if rows and rows[0] else ""
            if month_name in first_cell.replace('"', "").strip().upper():
                logger.info("Found %s via CSV probe (gid %s)", month_name, gid)
                return SheetTab(gid=gid)
        return None

    def _list_tabs(self) -> List[SheetTab]:
        if not self._client.has_credentials:
            return []
        try:
            return self._client.list_tabs()
        except (TransientIOError, AuthError) as exc:
            logger.warning("Could not list sheet tabs, falling back to CSV probing: %s", exc)
            return []

    @staticmethod
    def _match_metadata(tabs: Iterable[SheetTab], month_name: str, year: int) -> Optional[SheetTab]:
        tabs = list(tabs)
        year_text = str(year)
        for tab in tabs:
            title = (tab.title or "").upper()
            if month_name in title and year_text in title:
                return tab
        for tab in tabs:
            title = (tab.title or "").upper()
            if month_name in title and not _YEAR_RE.search(title):
                return tab
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def resolve(self, month_date: Optional[date] = None) -> SheetTab:
        """Return the tab for the month containing ``month_date`` (default: today)."""

        today = self._clock().date()
        target = month_date or today
        year, month = target.year, target.month
        key = month_key(year, month)
        is_current = (year, month) == (today.year, today.month)
        is_future = (year, month) > (today.year, today.month)
        month_name = MONTH_NAMES[month - 1]
        readable = READABLE_MONTH_NAMES[month - 1]

        cached = self._cached(key, is_current)
        if cached is not None:
            return cached

        logger.debug("Looking for sheet %s %s", month_name, year)
        try:
            if is_current:
                found = self._probe_csv(month_name)
                if found:
                    return self._remember(key, is_current, found)

            found = self._match_metadata(self._list_tabs(), month_name, year)
            if found:
                logger.info("Found sheet %r (gid %s) for %s %s", found.title, found.gid, month_name, year)
                return self._remember(key, is_current, found)

            found = self._probe_csv(month_name)
            if found:
                return self._remember(key, is_current, found)

            if is_current:
                logger.warning(
                    "Could not find sheet for %s %s, using first sheet (gid %s) as fallback",
                    month_name,
                    year,
                    FALLBACK_GID,
                )
                return self._remember(key, is_current, SheetTab(gid=FALLBACK_GID))

            raise SheetNotFound(
                month,
                year,
                readable,
                suggested_titles(year, month),
                is_future=is_future,
            )
        except SheetNotFound:
            raise
        except BookingSheetError as exc:
            raise TransientIOError(f"Failed to access the sheet for {readable} {year}. {exc}") from exc

    def title_for(self, tab: SheetTab) -> str:
        """Return the human title of ``tab`` for building A1 ranges.

        Only the metadata endpoint is trusted: a failed listing or a gid it
        does not list raises :class:`TransientIOError`.
        """

        if tab.title:
            return tab.title
        for candidate in self._client.list_tabs():
            if candidate.gid == tab.gid and candidate.title:
                return candidate.title
        raise TransientIOError(f"No sheet tab with gid {tab.gid} was listed by the spreadsheet")

    def resolve_titled(self, month_date: Optional[date] = None) -> SheetTab:
        """Like :meth:`resolve` but always returns a tab with a title."""

        tab = self.resolve(month_date)
        if tab.title:
            return tab
        return SheetTab(gid=tab.gid, title=self.title_for(tab))


__all__ = [
    "FALLBACK_GID",
    "MONTH_NAMES",
    "READABLE_MONTH_NAMES",
    "SheetLocator",
    "month_key",
    "suggested_titles",
]
