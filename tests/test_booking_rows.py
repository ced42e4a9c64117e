from __future__ import annotations

import sys
from datetime import date, datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fake_sheets import NOW, march_rows
from roombook.booking_rows import (
    expand_fixed_schedules,
    extract_time_slots,
    parse_booking_row,
    parse_bookings,
    sunday_based_weekday,
)
from roombook.fixed_schedule_rows import parse_fixed_schedules


def test_row_flagged_for_both_rooms_yields_both_bookings():
    row = ["5", "Thursday", "Alice", "TRUE", "  da   lat ", "10:00", "10:30", "13:00", "14:00"]

    bookings = parse_booking_row(row, 7, 3, 2026)

    assert [booking.id for booking in bookings] == [
        "nha-trang-7-10:00-10:30",
        "nha-trang-7-13:00-14:00",
        "da-lat-7-10:00-10:30",
        "da-lat-7-13:00-14:00",
    ]
    first = bookings[0]
    assert first.start == datetime(2026, 3, 5, 10, 0)
    assert first.end == datetime(2026, 3, 5, 10, 30)
    assert first.title == "Alice"
    assert first.display_title == "Booked by Alice"
    assert first.row_number == 7
    assert not first.is_fixed


def test_rows_without_date_room_or_valid_times_are_skipped():
    assert parse_booking_row(["", "", "Bob", "TRUE", "", "9:00", "10:00", "", ""], 1, 3, 2026) == []
    assert parse_booking_row(["32", "", "Bob", "TRUE", "", "9:00", "10:00", "", ""], 1, 3, 2026) == []
    assert parse_booking_row(["3", "", "Bob", "", "", "9:00", "10:00", "", ""], 1, 3, 2026) == []
    assert parse_booking_row(["3", "", "Bob", "TRUE", "", "9:00", "9:00", "", ""], 1, 3, 2026) == []
    assert parse_booking_row(["3", "", "Bob", "TRUE", "", "nine", "10:00", "", ""], 1, 3, 2026) == []


def test_booking_without_staff_is_requested_by_unknown():
    booking = parse_booking_row(["3", "", "", "NHA TRANG", "", "9:00", "10:00", "", ""], 9, 3, 2026)[0]
    assert booking.requested_by == "Unknown"
    assert booking.display_title == "Booked"


def test_parse_bookings_adds_fixed_occurrences_for_the_rest_of_the_current_month():
    bookings = parse_bookings(march_rows(), 3, 2026, today=NOW.date())

    concrete = [booking for booking in bookings if not booking.is_fixed]
    assert [booking.id for booking in concrete] == ["da-lat-7-10:00-10:30", "nha-trang-8-14:00-15:00"]

    occurrences = [booking for booking in bookings if booking.is_fixed]
    # Two schedules on every day from the 4th to the 31st.
    assert len(occurrences) == 2 * 28
    assert min(booking.start.date() for booking in occurrences) == date(2026, 3, 4)
    assert "fixed-1-nha-trang@2026-03-04" in {booking.id for booking in occurrences}


def test_fixed_schedules_are_not_projected_into_other_months():
    schedules = parse_fixed_schedules(march_rows())
    assert expand_fixed_schedules(schedules, 4, 2026, NOW.date()) == []
    assert expand_fixed_schedules(schedules, 2, 2026, NOW.date()) == []

    april = parse_bookings(march_rows(), 4, 2026, today=NOW.date())
    assert all(not booking.is_fixed for booking in april)


def test_sunday_based_weekday():
    assert sunday_based_weekday(date(2026, 3, 1)) == 0
    assert sunday_based_weekday(date(2026, 3, 4)) == 3
    assert sunday_based_weekday(date(2026, 3, 7)) == 6


def test_extract_time_slots_reads_booking_rows_only():
    assert extract_time_slots(march_rows()) == ["10:00", "10:30", "14:00", "15:00"]
