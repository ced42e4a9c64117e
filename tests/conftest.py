from __future__ import annotations

import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path

# Application data (settings, logs, conflict log) must never land in the real home directory.
os.environ.setdefault("ROOMBOOK_HOME", tempfile.mkdtemp(prefix="roombook-tests-"))

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from fake_sheets import MONTH_GID, MONTH_TITLE, NOW, SPREADSHEET_ID, FakeSheetsService, february_rows, march_rows
from roombook import conflicts
from roombook.booking_service import BookingService
from roombook.cache import LocalCache
from roombook.sheets_client import SheetsClient
from settings import BookingSheetSettings


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def _reset_conflict_log():
    conflicts.clear()
    yield
    conflicts.clear()


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def fake_sheets() -> FakeSheetsService:
    return FakeSheetsService(
        [
            (0, "FEBRUARY 2026", february_rows()),
            (MONTH_GID, MONTH_TITLE, march_rows()),
        ]
    )


@pytest.fixture
def client(fake_sheets: FakeSheetsService) -> SheetsClient:
    return SheetsClient(SPREADSHEET_ID, service=fake_sheets, csv_fetcher=fake_sheets.csv)


@pytest.fixture
def settings() -> BookingSheetSettings:
    return BookingSheetSettings(spreadsheet_id=SPREADSHEET_ID, refresh_delay_seconds=0, cache_path=None)


@pytest.fixture
def service(settings, client, clock) -> BookingService:
    return BookingService(settings, client=client, cache=LocalCache(), clock=clock, sleep=lambda seconds: None)
