"""Turn the booking table of a monthly tab into :class:`Booking` records."""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence

from roombook import layout
from roombook.fixed_schedule_rows import parse_fixed_schedules, room_flag_matches
from roombook.identifiers import booking_id, occurrence_id
from roombook.models import DEFAULT_ROOMS, Booking, FixedSchedule, Room

logger = logging.getLogger(__name__)


def at_minutes(day: date, minutes: int) -> datetime:
    return datetime.combine(day, time(0, 0)) + timedelta(minutes=minutes)


def sunday_based_weekday(day: date) -> int:
    """Return 0 for Sunday .. 6 for Saturday."""

    return (day.weekday() + 1) % 7


def parse_booking_row(
    row: Sequence[object],
    row_number: int,
    month: int,
    year: int,
    rooms: Sequence[Room] = DEFAULT_ROOMS,
) -> List[Booking]:
    """Return the bookings carried by one sheet row (possibly none)."""

    day = layout.parse_day_of_month(layout.cell(row, layout.COL_DATE), year=year, month=month)
    if day is None:
        return []
    base = date(year, month, day)
    staff = layout.cell(row, layout.COL_STAFF)

    bookings: List[Booking] = []
    for room in rooms:
        if not room_flag_matches(layout.cell(row, room.flag_column), room):
            continue
        for start_column, end_column in layout.TIME_PAIRS:
            start_text = layout.cell(row, start_column)
            end_text = layout.cell(row, end_column)
            start = layout.parse_time_of_day(start_text)
            end = layout.parse_time_of_day(end_text)
            if start is None or end is None or end <= start:
                continue
            bookings.append(
                Booking(
                    id=booking_id(room.id, row_number, start_text, end_text),
                    room_id=room.id,
                    title=staff,
                    requested_by=staff or "Unknown",
                    start=at_minutes(base, start),
                    end=at_minutes(base, end),
                    row_number=row_number,
                )
            )
    return bookings


def expand_fixed_schedules(
    schedules: Iterable[FixedSchedule],
    month: int,
    year: int,
    today: date,
) -> List[Booking]:
    """Materialise fixed schedules as bookings for the rest of the current month.

    Nothing is projected into any month other than the one containing
    ``today``, and dates before ``today`` are left out.
    """

    if (year, month) != (today.year, today.month):
        return []
    schedules = list(schedules)
    last_day = calendar.monthrange(year, month)[1]
    occurrences: List[Booking] = []
    for day_number in range(today.day, last_day + 1):
        day = date(year, month, day_number)
        weekday = sunday_based_weekday(day)
        for schedule in schedules:
            if schedule.day_of_week != weekday:
                continue
            occurrences.append(
                Booking(
                    id=occurrence_id(schedule.id, day),
                    room_id=schedule.room_id,
                    title=schedule.staff_name,
                    requested_by=schedule.staff_name or "Unknown",
                    start=at_minutes(day, schedule.start_minutes),
                    end=at_minutes(day, schedule.end_minutes),
                    is_fixed=True,
                    row_number=schedule.row_number,
                )
            )
    return occurrences


def parse_bookings(
    matrix: Sequence[Sequence[object]],
    month: int,
    year: int,
    rooms: Sequence[Room] = DEFAULT_ROOMS,
    *,
    today: Optional[date] = None,
    start_index: Optional[int] = None,
    include_fixed: bool = True,
) -> List[Booking]:
    """Parse every booking row of ``matrix`` for ``month``/``year``.

    Rows without a date, without an assigned room or without a valid time
    pair are skipped silently.  When ``include_fixed`` is set, fixed schedules
    from the top of the tab are appended as occurrences (see
    :func:`expand_fixed_schedules`).
    """

    if start_index is None:
        start_index = layout.first_data_index(matrix, default=layout.DEFAULT_CSV_DATA_INDEX)

    bookings: List[Booking] = []
    for index in range(start_index, len(matrix)):
        bookings.extend(parse_booking_row(matrix[index], index + 1, month, year, rooms))

    if include_fixed:
        today = today or date.today()
        schedules = parse_fixed_schedules(matrix, rooms)
        bookings.extend(expand_fixed_schedules(schedules, month, year, today))

    logger.debug("Parsed %d bookings for %04d-%02d", len(bookings), year, month)
    return bookings


def extract_time_slots(
    matrix: Sequence[Sequence[object]], *, start_index: Optional[int] = None
) -> List[str]:
    """Return the distinct ``HH:mm`` times used by booking rows, sorted."""

    if start_index is None:
        start_index = layout.first_data_index(matrix, default=layout.DEFAULT_CSV_DATA_INDEX)
    minutes = set()
    for row in matrix[start_index:]:
        if not layout.cell(row, layout.COL_DATE):
            continue
        for column in range(layout.COL_MORNING_START, layout.COLUMN_COUNT):
            value = layout.parse_time_of_day(layout.cell(row, column))
            if value is not None:
                minutes.add(value)
    return [layout.format_hhmm(value) for value in sorted(minutes)]


__all__ = [
    "at_minutes",
    "expand_fixed_schedules",
    "extract_time_slots",
    "parse_booking_row",
    "parse_bookings",
    "sunday_based_weekday",
]
