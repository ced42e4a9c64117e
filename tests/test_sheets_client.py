from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fake_sheets import MONTH_GID, MONTH_TITLE, FakeSheetsService, march_rows
from roombook import sheets_client
from roombook.errors import AuthError, TransientIOError
from roombook.models import SheetTab


def test_quote_title_escapes_apostrophes():
    assert sheets_client.quote_title("MARCH 2026") == "'MARCH 2026'"
    assert sheets_client.quote_title("Bob's") == "'Bob''s'"
    with pytest.raises(ValueError):
        sheets_client.quote_title("  ")


def test_column_letters_and_ranges():
    assert sheets_client.column_letter(1) == "A"
    assert sheets_client.column_letter(9) == "I"
    assert sheets_client.column_letter(27) == "AA"
    assert sheets_client.a1_row_range("MARCH 2026", 7) == "'MARCH 2026'!A7:I7"
    assert sheets_client.a1_row_range("MARCH 2026", 2, first_column=3) == "'MARCH 2026'!C2:I2"
    assert sheets_client.a1_table_range("MARCH 2026") == "'MARCH 2026'!A1:I"


def test_grid_range_uses_zero_based_exclusive_indices():
    assert sheets_client.grid_range("240206239", 6) == {
        "sheetId": 240206239,
        "startRowIndex": 6,
        "endRowIndex": 7,
        "startColumnIndex": 0,
        "endColumnIndex": 9,
    }


def test_urls(client):
    assert client.csv_url("0") == (
        "https://docs.google.com/spreadsheets/d/sheet-id/gviz/tq?tqx=out:csv&gid=0"
    )
    assert client.edit_url() == "https://docs.google.com/spreadsheets/d/sheet-id/edit"
    assert client.edit_url("42") == "https://docs.google.com/spreadsheets/d/sheet-id/edit#gid=42"


def test_list_tabs_and_values_round_trip(client, fake_sheets):
    assert SheetTab(gid=str(MONTH_GID), title=MONTH_TITLE) in client.list_tabs()

    client.update_values("'MARCH 2026'!C4:I4", [["Lan", "TRUE", "", "8:00", "9:00", "", ""]])

    rows = client.get_values(sheets_client.a1_table_range(MONTH_TITLE))
    assert rows[3][2:7] == ["Lan", "TRUE", "", "8:00", "9:00"]
    assert fake_sheets.value_writes[-1][0] == "'MARCH 2026'!C4:I4"


def test_fetch_csv_parses_the_export(client):
    rows = client.fetch_csv(str(MONTH_GID))
    assert rows[0][0] == "MARCH 2026"
    assert rows[6][:3] == ["5", "Thursday", "Alice"]


def test_api_failures_become_transient_errors(client, fake_sheets):
    fake_sheets.fail_on.update({"values.get", "csv"})
    with pytest.raises(TransientIOError):
        client.get_values("'MARCH 2026'!A1:I")
    with pytest.raises(TransientIOError):
        client.fetch_csv("0")


def test_empty_batches_send_nothing(client, fake_sheets):
    assert client.batch_update([]) == {}
    assert client.batch_update_values([]) == {}
    assert fake_sheets.structural_requests == []


def test_authenticated_calls_need_a_token_provider():
    client = sheets_client.SheetsClient("sheet-id", csv_fetcher=lambda url: "")
    assert not client.has_credentials
    with pytest.raises(AuthError):
        client.get_values("'MARCH 2026'!A1:I")


def test_each_thread_builds_its_own_service(monkeypatch):
    built = []

    def fake_build(token_provider):
        service = FakeSheetsService([(MONTH_GID, MONTH_TITLE, march_rows())])
        built.append(service)
        return service

    monkeypatch.setattr(sheets_client, "_build_service", fake_build)
    client = sheets_client.SheetsClient("sheet-id", token_provider=object(), csv_fetcher=lambda url: "")

    client.list_tabs()
    client.list_tabs()
    worker = threading.Thread(target=client.list_tabs)
    worker.start()
    worker.join(5)

    assert [service.metadata_calls for service in built] == [2, 1]
