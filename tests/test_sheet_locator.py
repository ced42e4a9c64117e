from __future__ import annotations

import sys
from datetime import date, datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fake_sheets import MONTH_GID, FakeSheetsService, march_rows
from roombook.errors import SheetNotFound, TransientIOError
from roombook.models import SheetTab
from roombook.sheet_locator import SheetLocator, suggested_titles
from roombook.sheets_client import SheetsClient


def _locator(client, clock):
    return SheetLocator(client, probe_gids=("0", str(MONTH_GID)), clock=clock)


def test_current_month_is_found_by_csv_probe_without_metadata(client, fake_sheets, clock):
    locator = _locator(client, clock)

    assert locator.resolve() == SheetTab(gid=str(MONTH_GID))
    assert fake_sheets.csv_requests == ["0", str(MONTH_GID)]
    assert fake_sheets.metadata_calls == 0


def test_current_month_result_is_cached_until_month_rollover(client, fake_sheets, clock):
    locator = _locator(client, clock)
    locator.resolve()
    locator.resolve(date(2026, 3, 20))
    assert len(fake_sheets.csv_requests) == 2

    clock.now = datetime(2026, 4, 1, 8, 0)
    fake_sheets.tabs[7] = {"title": "APRIL 2026", "rows": [["APRIL 2026"]]}
    assert locator.resolve() == SheetTab(gid="7", title="APRIL 2026")


def test_other_months_use_metadata_with_year(client, fake_sheets, clock):
    locator = _locator(client, clock)

    assert locator.resolve(date(2026, 2, 10)) == SheetTab(gid="0", title="FEBRUARY 2026")
    locator.resolve(date(2026, 2, 20))
    assert fake_sheets.metadata_calls == 1


def test_titles_without_a_year_are_accepted_as_a_second_choice(clock):
    fake = FakeSheetsService([(0, "Notes", []), (5, "April", [["APRIL"]]), (6, "APRIL 2025", [])])
    client = SheetsClient("sheet-id", service=fake, csv_fetcher=fake.csv)

    assert _locator(client, clock).resolve(date(2026, 4, 1)).gid == "5"


def test_future_month_without_tab_names_both_suggestions(client, clock):
    with pytest.raises(SheetNotFound) as excinfo:
        _locator(client, clock).resolve(date(2026, 6, 1))

    error = excinfo.value
    assert error.is_future
    assert (error.month, error.year) == (6, 2026)
    assert error.suggested_titles == ("JUNE 2026", "June 2026")
    message = str(error)
    assert '"JUNE 2026"' in message and '"June 2026"' in message
    assert "doesn't exist yet" in message


def test_past_month_without_tab_is_not_reported_as_future(client, clock):
    with pytest.raises(SheetNotFound) as excinfo:
        _locator(client, clock).resolve(date(2025, 12, 1))
    assert not excinfo.value.is_future
    assert "No sheet was found for December 2025" in str(excinfo.value)


def test_current_month_falls_back_to_first_tab(clock, caplog):
    fake = FakeSheetsService([(0, "Sheet1", [["hello"]])])
    client = SheetsClient("sheet-id", service=fake, csv_fetcher=fake.csv)

    with caplog.at_level("WARNING"):
        assert _locator(client, clock).resolve() == SheetTab(gid="0")
    assert "using first sheet" in caplog.text


def test_public_only_client_never_calls_metadata(clock):
    fake = FakeSheetsService([(MONTH_GID, "MARCH 2026", march_rows())])
    client = SheetsClient("sheet-id", csv_fetcher=fake.csv)

    with pytest.raises(SheetNotFound):
        _locator(client, clock).resolve(date(2026, 5, 1))
    assert fake.metadata_calls == 0


def test_resolve_titled_fills_in_the_title(client, clock):
    tab = _locator(client, clock).resolve_titled()
    assert tab == SheetTab(gid=str(MONTH_GID), title="MARCH 2026")


def test_title_is_not_guessed_when_metadata_fails(client, fake_sheets, clock):
    fake_sheets.fail_on = {"metadata"}

    with pytest.raises(TransientIOError):
        _locator(client, clock).resolve_titled()


def test_title_for_an_unlisted_gid_is_an_error(client, clock):
    with pytest.raises(TransientIOError, match="gid 99"):
        _locator(client, clock).title_for(SheetTab(gid="99"))


def test_suggested_titles():
    assert suggested_titles(2027, 1) == ["JANUARY 2027", "January 2027"]
