from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fake_sheets import MONTH_GID, MONTH_TITLE, FakeSheetsService, march_rows
from roombook import layout
from roombook.errors import BookingNotFound, FixedScheduleNotFound
from roombook.fixed_schedule_rows import parse_fixed_schedules, unique_fixed_schedules
from roombook.grid_reader import GridReader
from roombook.grid_writer import (
    GridWriter,
    RowMatch,
    booking_row_values,
    insertion_row,
    pack_fixed_entries,
    remaining_booking_rows,
    require_matches,
)
from roombook.models import DEFAULT_ROOMS, SheetTab
from roombook.sheets_client import SheetsClient

NHA_TRANG, DA_LAT = DEFAULT_ROOMS
TAB = SheetTab(gid=str(MONTH_GID), title=MONTH_TITLE)
HEADER = ["DATE", "DAY", "STAFF", "NHA TRANG", "DA LAT", "", "", "", ""]


def _setup(rows):
    fake = FakeSheetsService([(MONTH_GID, MONTH_TITLE, rows)])
    client = SheetsClient("sheet-id", service=fake, csv_fetcher=fake.csv)
    matrix = GridReader(client).read_exact(TAB)
    return fake, GridWriter(client), matrix


def _dated(fake, day):
    return [row for row in fake.rows(MONTH_TITLE) if row[0] == str(day)]


def _fixed_ids(fake):
    return [entry.id for entry in unique_fixed_schedules(parse_fixed_schedules(fake.rows(MONTH_TITLE)))]


# ----------------------------------------------------------------------
# Pure helpers
# ----------------------------------------------------------------------
def test_insertion_row_keeps_each_date_sorted_by_start():
    matrix = layout.pad_rows(march_rows())
    assert insertion_row(matrix, 5, 9 * 60) == 7
    assert insertion_row(matrix, 5, 10 * 60) == 7
    assert insertion_row(matrix, 5, 11 * 60) == 8


def test_insertion_row_for_a_date_without_rows():
    matrix = layout.pad_rows(march_rows())
    # After the closest earlier date, else before the first later one.
    assert insertion_row(matrix, 10, 9 * 60) == 9
    assert insertion_row(matrix, 3, 9 * 60) == 7


def test_insertion_row_in_sparse_tables():
    header_only = layout.pad_rows([["MARCH 2026"], [], [], [], HEADER])
    assert insertion_row(header_only, 1, 9 * 60) == 6

    undated = layout.pad_rows([["MARCH 2026"], [], [], [], HEADER, ["", "", "note"]])
    assert insertion_row(undated, 1, 9 * 60) == 7

    assert insertion_row([], 1, 9 * 60) == layout.DEFAULT_FIRST_DATA_INDEX + 1


def test_rows_without_a_time_sort_last_within_their_date():
    matrix = layout.pad_rows(
        [HEADER, ["5", "", "Lan", "TRUE", "", "", "", "", ""], ["5", "", "An", "TRUE", "", "10:00", "11:00", "", ""]]
    )
    assert insertion_row(matrix, 5, 9 * 60) == 3
    assert insertion_row(matrix, 5, 12 * 60) == 4


def test_booking_row_values_pick_columns_by_half_day():
    matrix = layout.pad_rows(march_rows())

    morning = booking_row_values(matrix, DA_LAT, datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 9, 30), "Carol")
    afternoon = booking_row_values(matrix, NHA_TRANG, datetime(2026, 3, 10, 14), datetime(2026, 3, 10, 15), "")

    assert morning == [10, "Tuesday", "Carol", "", "DA LAT", "9:00", "9:30", "", ""]
    assert afternoon == [10, "Tuesday", "", "NHA TRANG", "", "", "", "14:00", "15:00"]


def test_booking_row_values_reuse_the_existing_dropdown_value():
    matrix = layout.pad_rows([HEADER, ["5", "", "Lan", "", "TRUE", "8:00", "9:00", "", ""]])
    values = booking_row_values(matrix, DA_LAT, datetime(2026, 3, 6, 8), datetime(2026, 3, 6, 9), "An")
    assert values[4] == "TRUE"


def test_remaining_booking_rows_keeps_other_bookings_of_a_shared_row():
    only = ["5", "", "Lan", "", "DA LAT", "10:00", "10:30", "", ""]
    assert remaining_booking_rows(only, DA_LAT, 0, DEFAULT_ROOMS) == []

    two_pairs = ["5", "", "Lan", "", "DA LAT", "10:00", "10:30", "13:00", "14:00"]
    assert remaining_booking_rows(two_pairs, DA_LAT, 0, DEFAULT_ROOMS) == [
        ["5", "", "Lan", "", "DA LAT", "", "", "13:00", "14:00"]
    ]

    two_rooms = ["5", "", "Lan", "NHA TRANG", "DA LAT", "10:00", "10:30", "", ""]
    assert remaining_booking_rows(two_rooms, DA_LAT, 0, DEFAULT_ROOMS) == [
        ["5", "", "Lan", "NHA TRANG", "", "10:00", "10:30", "", ""]
    ]

    both = ["5", "", "Lan", "NHA TRANG", "DA LAT", "10:00", "10:30", "13:00", "14:00"]
    assert remaining_booking_rows(both, DA_LAT, 0, DEFAULT_ROOMS) == [
        ["5", "", "Lan", "NHA TRANG", "", "10:00", "10:30", "13:00", "14:00"],
        ["5", "", "Lan", "", "DA LAT", "", "", "13:00", "14:00"],
    ]


def test_pack_fixed_entries_keeps_full_products_on_one_row():
    full = [("Team A", "nha-trang", 0, 540, 570), ("Team B", "nha-trang", 0, 540, 570)]
    assert pack_fixed_entries(full) == [(("Team A", "Team B"), ("nha-trang",), ((0, 540, 570),))]

    partial = [("Hoa", "da-lat", 0, 480, 540), ("Hoa", "nha-trang", 1, 780, 840), ("Hoa", "nha-trang", 0, 480, 540)]
    assert pack_fixed_entries(partial) == [
        (("Hoa",), ("da-lat",), ((0, 480, 540),)),
        (("Hoa",), ("nha-trang",), ((0, 480, 540), (1, 780, 840))),
    ]
    assert pack_fixed_entries([]) == []


def test_require_matches_raises_not_found():
    with pytest.raises(BookingNotFound):
        require_matches([], "da-lat-7-10:00-10:30")


# ----------------------------------------------------------------------
# Booking rows against the fake service
# ----------------------------------------------------------------------
def test_insert_booking_inserts_writes_and_copies_format():
    fake, writer, matrix = _setup(march_rows())

    result = writer.insert_booking(TAB, matrix, "da-lat", datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 9, 30), "Carol")

    assert result.row_number == 9
    assert result.range == "A9:I9"
    assert fake.rows(MONTH_TITLE)[8] == ["10", "Tuesday", "Carol", "", "DA LAT", "9:00", "9:30", "", ""]
    insert = fake.requests_of("insertDimension")[0]
    assert insert["inheritFromBefore"] is False
    assert (insert["range"]["startIndex"], insert["range"]["endIndex"]) == (8, 9)
    copy = fake.requests_of("copyPaste")[0]
    assert copy["pasteType"] == "PASTE_FORMAT"
    assert copy["source"]["startRowIndex"] == 7
    assert copy["destination"]["startRowIndex"] == 8
    assert result.formatting.attempted and result.formatting.ok
    assert matrix[8][2] == "Carol"


def test_formatting_failure_does_not_fail_the_insert(caplog):
    fake, writer, matrix = _setup(march_rows())
    fake.fail_on.add("copyPaste")

    with caplog.at_level("WARNING"):
        result = writer.insert_booking(TAB, matrix, "da-lat", datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10), "")

    assert result.formatting.attempted and not result.formatting.ok
    assert _dated(fake, 10)
    assert "Formatting copy" in caplog.text


def test_first_row_of_an_empty_table_copies_the_header_format():
    fake, writer, matrix = _setup([["MARCH 2026"], [], [], [], HEADER])

    result = writer.insert_booking(TAB, matrix, "nha-trang", datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 10), "")

    assert result.row_number == 6
    assert fake.requests_of("copyPaste")[0]["source"]["startRowIndex"] == 4


def test_delete_booking_clears_only_its_cells_on_a_shared_row():
    rows = march_rows()
    rows[6] = ["5", "Thursday", "Alice", "NHA TRANG", "DA LAT", "10:00", "10:30", "", ""]
    fake, writer, matrix = _setup(rows)

    matches = writer.locate_booking(matrix, "da-lat", datetime(2026, 3, 5).date(), 600, 630)
    assert writer.delete_booking(TAB, matrix, "da-lat", matches) == [7]

    assert fake.requests_of("deleteDimension") == []
    assert fake.rows(MONTH_TITLE)[6] == ["5", "Thursday", "Alice", "NHA TRANG", "", "10:00", "10:30", "", ""]


def test_duplicate_rows_are_deleted_highest_index_first():
    rows = march_rows()
    rows.insert(7, list(rows[6]))
    fake, writer, matrix = _setup(rows)

    matches = writer.locate_booking(matrix, "da-lat", datetime(2026, 3, 5).date(), 600, 630)
    assert [match.row_number for match in matches] == [7, 8]
    writer.delete_booking(TAB, matrix, "da-lat", matches)

    assert [request["range"]["startIndex"] for request in fake.requests_of("deleteDimension")] == [7, 6]
    assert _dated(fake, 5) == []
    assert _dated(fake, 6)[0][2] == "Bob"


def test_replace_booking_shifts_the_stale_row_when_inserting_above_it():
    fake, writer, matrix = _setup(march_rows())
    old = writer.locate_booking(matrix, "nha-trang", datetime(2026, 3, 6).date(), 14 * 60, 15 * 60)

    result = writer.replace_booking(
        TAB, matrix, old, "nha-trang", "nha-trang", datetime(2026, 3, 6, 10), datetime(2026, 3, 6, 11), "Bob"
    )

    assert result.row_number == 8
    assert result.cleanup.ok
    assert fake.requests_of("deleteDimension")[0]["range"]["startIndex"] == 8
    assert _dated(fake, 6) == [["6", "Friday", "Bob", "NHA TRANG", "", "10:00", "11:00", "", ""]]


def test_failed_cleanup_keeps_the_duplicate_and_reports_it():
    fake, writer, matrix = _setup(march_rows())
    old = writer.locate_booking(matrix, "da-lat", datetime(2026, 3, 5).date(), 600, 630)
    fake.fail_on.add("deleteDimension")

    result = writer.replace_booking(
        TAB, matrix, old, "da-lat", "da-lat", datetime(2026, 3, 5, 11), datetime(2026, 3, 5, 12), "Alice"
    )

    assert result.cleanup.attempted and not result.cleanup.ok
    assert len(_dated(fake, 5)) == 2


# ----------------------------------------------------------------------
# Fixed-schedule region
# ----------------------------------------------------------------------
def _three_fixed_rows():
    return [
        ["MARCH 2026", "", "Team A", "NHA TRANG", "", "9:00", "9:30", "", ""],
        ["", "", "Team B", "", "DA LAT", "", "", "13:00", "14:00"],
        ["", "", "Team C", "NHA TRANG", "", "", "", "15:00", "16:00"],
        ["", "", "", "", "", "", "", "", ""],
        HEADER,
        ["5", "Thursday", "Alice", "", "DA LAT", "10:00", "10:30", "", ""],
    ]


def test_deleting_a_middle_fixed_schedule_compacts_the_region():
    fake, writer, matrix = _setup(_three_fixed_rows())

    removed = writer.delete_fixed_schedule(TAB, matrix, "fixed-2-da-lat")

    assert removed.staff_name == "Team B"
    rows = fake.rows(MONTH_TITLE)
    assert [row[2] for row in rows[:4]] == ["Team A", "Team C", "", ""]
    assert rows[2][2:] == [""] * 7
    assert rows[0][0] == "MARCH 2026"
    assert rows[4] == HEADER
    assert fake.structural_requests == []
    assert fake.value_writes[-1][0] == "'MARCH 2026'!C2:I3"
    assert _fixed_ids(fake) == ["fixed-1-nha-trang", "fixed-2-nha-trang"]


def test_create_fixed_schedule_fills_the_first_free_row():
    fake, writer, matrix = _setup(_three_fixed_rows())

    result = writer.create_fixed_schedule(TAB, matrix, "Team D", "da-lat", 8 * 60, 9 * 60)

    assert result.row_number == 4
    assert fake.rows(MONTH_TITLE)[3] == ["", "", "Team D", "", "DA LAT", "8:00", "9:00", "", ""]
    assert fake.value_writes[-1][0] == "'MARCH 2026'!C4:I4"


def test_create_fixed_schedule_grows_a_full_region_above_the_header():
    rows = _three_fixed_rows()
    rows[3] = ["", "", "Team D", "", "DA LAT", "8:00", "9:00", "", ""]
    fake, writer, matrix = _setup(rows)

    result = writer.create_fixed_schedule(TAB, matrix, "Team E", "da-lat", 16 * 60, 17 * 60)

    assert result.row_number == 5
    assert fake.requests_of("insertDimension")[0]["range"]["startIndex"] == 4
    assert fake.requests_of("copyPaste")[0]["source"]["startRowIndex"] == 3
    sheet = fake.rows(MONTH_TITLE)
    assert sheet[4][2] == "Team E"
    assert sheet[5] == HEADER
    assert "fixed-5-da-lat" in _fixed_ids(fake)


def test_removing_one_team_from_a_split_cell_rewrites_the_staff_cell():
    rows = march_rows()
    rows[0] = ["MARCH 2026", "", "Team A Team B BOOKING STAFF", "NHA TRANG", "", "9:00", "9:30", "", ""]
    fake, writer, matrix = _setup(rows)

    writer.delete_fixed_schedule(TAB, matrix, "fixed-1.1-nha-trang")

    assert fake.rows(MONTH_TITLE)[0] == ["MARCH 2026", "", "Team A", "NHA TRANG", "", "9:00", "9:30", "", ""]


def test_removing_one_time_pair_clears_only_that_pair():
    rows = march_rows()
    rows[1] = ["", "", "Hoa", "", "DA LAT", "8:00", "9:00", "13:00", "14:00"]
    fake, writer, matrix = _setup(rows)

    writer.delete_fixed_schedule(TAB, matrix, "fixed-2.1-da-lat")

    assert fake.rows(MONTH_TITLE)[1] == ["", "", "Hoa", "", "DA LAT", "8:00", "9:00", "", ""]


def test_update_rewrites_a_single_entry_row_in_place():
    fake, writer, matrix = _setup(_three_fixed_rows())

    result = writer.update_fixed_schedule(TAB, matrix, "fixed-1-nha-trang", "Team A", "nha-trang", 9 * 60, 10 * 60)

    assert result.row_number == 1
    assert fake.rows(MONTH_TITLE)[0] == ["MARCH 2026", "", "Team A", "NHA TRANG", "", "9:00", "10:00", "", ""]
    assert fake.structural_requests == []


def test_update_moves_an_entry_out_of_a_shared_row():
    rows = _three_fixed_rows()
    rows[0] = ["MARCH 2026", "", "Team A Team B", "NHA TRANG", "", "9:00", "9:30", "", ""]
    rows[1] = ["", "", "", "", "", "", "", "", ""]
    fake, writer, matrix = _setup(rows)

    result = writer.update_fixed_schedule(TAB, matrix, "fixed-1.1-nha-trang", "Team B", "da-lat", 13 * 60, 14 * 60)

    assert result.row_number == 2
    sheet = fake.rows(MONTH_TITLE)
    assert sheet[0][2] == "Team A"
    assert sheet[1] == ["", "", "Team B", "", "DA LAT", "", "", "13:00", "14:00"]


def test_unknown_fixed_schedule_is_not_found():
    _fake, writer, matrix = _setup(_three_fixed_rows())
    with pytest.raises(FixedScheduleNotFound):
        writer.delete_fixed_schedule(TAB, matrix, "fixed-4-da-lat")


def test_row_match_is_a_value_object():
    assert RowMatch(7, 0) == RowMatch(row_number=7, slot=0)
