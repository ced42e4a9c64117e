"""Read a monthly tab as a rectangular matrix of text cells.

Two interchangeable strategies exist.  The public CSV export needs no
credentials and suits polling, but its row indices are not guaranteed to
match the sheet's.  Anything that computes a row number for a later write
must go through :meth:`GridReader.read_exact`, which uses the values API.
"""

from __future__ import annotations

import logging
from typing import List

from roombook import layout
from roombook.models import SheetTab
from roombook.sheets_client import a1_table_range

logger = logging.getLogger(__name__)


class GridReader:
    def __init__(self, client) -> None:
        self._client = client

    def read_public(self, tab: SheetTab) -> List[List[str]]:
        rows = self._client.fetch_csv(tab.gid)
        logger.debug("Read %d rows from gid %s via CSV", len(rows), tab.gid)
        return layout.pad_rows(rows)

    def read_exact(self, tab: SheetTab) -> List[List[str]]:
        """Read ``A1:I`` of ``tab`` through the values API (``tab.title`` required)."""

        if not tab.title:
            raise ValueError("An exact read needs the tab title")
        rows = self._client.get_values(a1_table_range(tab.title))
        logger.debug("Read %d rows from %r via the values API", len(rows), tab.title)
        return layout.pad_rows(rows)


__all__ = ["GridReader"]
