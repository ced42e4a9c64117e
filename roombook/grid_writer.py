"""Row-level writes against a monthly tab.

Every method takes the tab (gid and title) plus a matrix read through the
values API, so row numbers line up with the sheet.  The matrix passed in is
treated as a scratch copy: methods that issue several writes keep it in sync
with what they sent so later steps compute positions against the new layout.

A booking row insert is three requests: a structural insert that does not
inherit formatting, a value write of ``A:I`` and a best-effort ``PASTE_FORMAT``
copy from a neighbouring row.  Only the first two can fail the operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from roombook import layout
from roombook.errors import BookingNotFound, FixedScheduleNotFound, TransientIOError
from roombook.fixed_schedule_rows import (
    FixedRow,
    find_fixed_schedule,
    parse_fixed_schedules,
    part_location,
    room_flag_matches,
    scan_fixed_region,
)
from roombook.models import DEFAULT_ROOMS, FixedSchedule, Room, SheetTab, StepOutcome, WriteResult
from roombook.sheets_client import a1_row_range, grid_range, quote_title

logger = logging.getLogger(__name__)

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# Fixed-schedule writes touch C..I only; A/B of the top rows hold the month title.
FIXED_FIRST_COLUMN = layout.COL_STAFF
FIXED_WIDTH = layout.COLUMN_COUNT - FIXED_FIRST_COLUMN

# (name, room_id, slot, start, end)
FixedEntry = Tuple[str, str, int, int, int]


@dataclass(frozen=True, slots=True)
class RowMatch:
    row_number: int
    slot: int


# ----------------------------------------------------------------------
# Pure helpers
# ----------------------------------------------------------------------
def _minutes(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def _row(matrix: Sequence[Sequence[object]], row_number: int) -> List[str]:
    if 1 <= row_number <= len(matrix):
        return [str(value) for value in matrix[row_number - 1]]
    return []


def _padded(values: Sequence[object]) -> List[str]:
    padded = ["" if value is None else str(value) for value in values]
    padded.extend([""] * (layout.COLUMN_COUNT - len(padded)))
    return padded


def flag_value(matrix: Sequence[Sequence[object]], room: Room) -> str:
    """Return the dropdown text existing entries use to flag ``room``."""

    for row in matrix:
        value = layout.cell(row, room.flag_column)
        if value and room_flag_matches(value, room) and layout.valid_time_pairs(row):
            return value
    return room.sheet_label


def booking_row_values(
    matrix: Sequence[Sequence[object]],
    room: Room,
    start: datetime,
    end: datetime,
    title: str,
) -> List[object]:
    """Build the nine ``A:I`` cells for a one-off booking."""

    values: List[object] = [start.day, DAY_NAMES[start.weekday()], title] + [""] * 6
    values[room.flag_column] = flag_value(matrix, room)
    start_column, end_column = layout.TIME_PAIRS[layout.slot_for_start(_minutes(start))]
    values[start_column] = layout.format_time_of_day(_minutes(start))
    values[end_column] = layout.format_time_of_day(_minutes(end))
    return values


def insertion_row(matrix: Sequence[Sequence[object]], day: int, start_minutes: int) -> int:
    """Return the 1-based sheet row a booking for ``day`` should be inserted at.

    Rows of the same date stay sorted by start time (rows without a time sort
    last).  A date without rows goes after the closest earlier date, else
    before the first later date, else after the last non-empty row, else at
    the first data row.
    """

    first_index = layout.first_data_index(matrix)
    same_date: List[Tuple[int, Optional[int]]] = []
    dated: List[Tuple[int, int]] = []
    last_non_empty: Optional[int] = None

    for index in range(first_index, len(matrix)):
        row = matrix[index]
        row_number = index + 1
        if not layout.is_blank(row):
            last_non_empty = row_number
        row_day = layout.parse_day_of_month(layout.cell(row, layout.COL_DATE))
        if row_day is None:
            continue
        dated.append((row_number, row_day))
        if row_day == day:
            same_date.append((row_number, layout.row_start_minutes(row)))

    if same_date:
        ordered = sorted(same_date, key=lambda entry: (entry[1] is None, entry[1] or 0))
        for row_number, minutes in ordered:
            if minutes is not None and minutes >= start_minutes:
                return row_number
        return max(row_number for row_number, _start in same_date) + 1

    earlier = [row_day for _row_number, row_day in dated if row_day < day]
    if earlier:
        closest = max(earlier)
        return max(row_number for row_number, row_day in dated if row_day == closest) + 1

    later = [row_number for row_number, row_day in dated if row_day > day]
    if later:
        return min(later)

    if last_non_empty is not None:
        return last_non_empty + 1
    return first_index + 1


def locate_booking_rows(
    matrix: Sequence[Sequence[object]],
    room: Room,
    day: date,
    start_minutes: int,
    end_minutes: int,
) -> List[RowMatch]:
    """Find every booking row whose content matches room, date and times."""

    matches: List[RowMatch] = []
    for index in range(layout.first_data_index(matrix), len(matrix)):
        row = matrix[index]
        row_day = layout.parse_day_of_month(
            layout.cell(row, layout.COL_DATE), year=day.year, month=day.month
        )
        if row_day != day.day:
            continue
        if not room_flag_matches(layout.cell(row, room.flag_column), room):
            continue
        for slot, start, end in layout.valid_time_pairs(row):
            if start == start_minutes and end == end_minutes:
                matches.append(RowMatch(row_number=index + 1, slot=slot))
                break
    return matches


def require_matches(matches: Sequence[RowMatch], description: str) -> Sequence[RowMatch]:
    if not matches:
        raise BookingNotFound(f"No sheet row matches booking {description}")
    return matches


def matched_staff_text(matrix: Sequence[Sequence[object]], matches: Sequence[RowMatch]) -> str:
    """Return the staff cell of the first matched row."""

    return layout.cell(_row(matrix, matches[0].row_number), layout.COL_STAFF)


def remaining_booking_rows(
    row: Sequence[object], room: Room, slot: int, rooms: Sequence[Room]
) -> List[List[str]]:
    """Return the row(s) that keep every other booking once one is removed.

    A row is a product of its flagged rooms and its time pairs.  Dropping one
    (room, slot) combination leaves zero rows (delete it), one row (clear the
    slot or the room flag) or, when other rooms and other pairs both remain,
    two rows.
    """

    base = _padded(row)
    flagged = [entry for entry in rooms if room_flag_matches(layout.cell(base, entry.flag_column), entry)]
    other_rooms = [entry for entry in flagged if entry.id != room.id]
    other_slots = [pair[0] for pair in layout.valid_time_pairs(base) if pair[0] != slot]
    start_column, end_column = layout.TIME_PAIRS[slot]

    if not other_rooms and not other_slots:
        return []

    if not other_rooms:
        kept = list(base)
        kept[start_column] = kept[end_column] = ""
        return [kept]

    kept = list(base)
    kept[room.flag_column] = ""
    if not other_slots:
        return [kept]

    split = list(base)
    for entry in other_rooms:
        split[entry.flag_column] = ""
    split[start_column] = split[end_column] = ""
    return [kept, split]


def fixed_row_values(
    staff_text: str,
    flags: Mapping[str, str],
    pairs: Sequence[Tuple[int, int, int]],
    rooms: Sequence[Room],
) -> List[str]:
    """Build the seven ``C:I`` cells of a fixed-schedule row."""

    values = [""] * layout.COLUMN_COUNT
    values[layout.COL_STAFF] = staff_text
    for room in rooms:
        if room.id in flags:
            values[room.flag_column] = flags[room.id]
    for slot, start, end in pairs:
        start_column, end_column = layout.TIME_PAIRS[slot]
        values[start_column] = layout.format_time_of_day(start)
        values[end_column] = layout.format_time_of_day(end)
    return values[FIXED_FIRST_COLUMN:]


def row_entries(parsed: FixedRow) -> List[FixedEntry]:
    entries: List[FixedEntry] = []
    for name in parsed.staff_names:
        for room_id in parsed.room_ids:
            for slot, start, end in parsed.pairs:
                entries.append((name, room_id, slot, start, end))
    return entries


def pack_fixed_entries(entries: Sequence[FixedEntry]) -> List[Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[Tuple[int, int, int], ...]]]:
    """Group fixed entries into sheet rows of ``(names, room_ids, pairs)``.

    Entries that still form a full names x rooms x pairs product share one
    row; otherwise each (name, room) gets its own row.
    """

    if not entries:
        return []
    names = tuple(dict.fromkeys(entry[0] for entry in entries))
    room_ids = tuple(dict.fromkeys(entry[1] for entry in entries))
    pairs = tuple(sorted(dict.fromkeys(entry[2:] for entry in entries)))
    slots = [pair[0] for pair in pairs]
    if len(set(slots)) == len(slots) and len(entries) == len(names) * len(room_ids) * len(pairs):
        return [(names, room_ids, pairs)]

    groups: Dict[Tuple[str, str], List[Tuple[int, int, int]]] = {}
    for name, room_id, slot, start, end in entries:
        groups.setdefault((name, room_id), []).append((slot, start, end))
    packed = []
    for (name, room_id), group_pairs in groups.items():
        by_slot: Dict[int, Tuple[int, int, int]] = {}
        for pair in group_pairs:
            by_slot.setdefault(pair[0], pair)
        packed.append(((name,), (room_id,), tuple(sorted(by_slot.values()))))
        for pair in group_pairs:
            if by_slot[pair[0]] != pair:
                packed.append(((name,), (room_id,), (pair,)))
    return packed


class GridWriter:
    """Issue inserts, value writes and deletes for one spreadsheet."""

    def __init__(self, client, rooms: Sequence[Room] = DEFAULT_ROOMS) -> None:
        self._client = client
        self._rooms = tuple(rooms)

    def _room(self, room_id: str) -> Room:
        for room in self._rooms:
            if room.id == room_id:
                return room
        raise KeyError(room_id)

    # ------------------------------------------------------------------
    # Low level requests
    # ------------------------------------------------------------------
    def _insert_dimension(self, tab: SheetTab, row_number: int) -> None:
        self._client.batch_update(
            [
                {
                    "insertDimension": {
                        "range": {
                            "sheetId": int(tab.gid),
                            "dimension": "ROWS",
                            "startIndex": row_number - 1,
                            "endIndex": row_number,
                        },
                        "inheritFromBefore": False,
                    }
                }
            ]
        )

    def delete_row(self, tab: SheetTab, row_number: int) -> None:
        self._client.batch_update(
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": int(tab.gid),
                            "dimension": "ROWS",
                            "startIndex": row_number - 1,
                            "endIndex": row_number,
                        }
                    }
                }
            ]
        )
        logger.info("Deleted row %d of %r", row_number, tab.title)

    def copy_format(self, tab: SheetTab, source_row: int, target_row: int) -> StepOutcome:
        """Copy formatting only from ``source_row``; failures are logged, not raised."""

        if source_row < 1 or source_row == target_row:
            return StepOutcome.skipped()
        request = {
            "copyPaste": {
                "source": grid_range(tab.gid, source_row - 1),
                "destination": grid_range(tab.gid, target_row - 1),
                "pasteType": "PASTE_FORMAT",
            }
        }
        try:
            self._client.batch_update([request])
        except TransientIOError as exc:
            logger.warning(
                "Formatting copy from row %d to row %d of %r failed: %s",
                source_row,
                target_row,
                tab.title,
                exc,
            )
            return StepOutcome.failed(exc)
        return StepOutcome.succeeded()

    def _write_row(self, tab: SheetTab, row_number: int, values: Sequence[object], *, first_column: int = 0) -> None:
        self._client.update_values(
            a1_row_range(
                tab.title or "",
                row_number,
                first_column=first_column + 1,
                last_column=first_column + len(values),
            ),
            [list(values)],
        )

    def insert_row(self, tab: SheetTab, matrix: List[List[str]], row_number: int, values: Sequence[object]) -> WriteResult:
        """Insert ``values`` as a new booking row at ``row_number``."""

        first_row = layout.first_data_index(matrix) + 1
        has_rows = any(not layout.is_blank(row) for row in matrix[first_row - 1:])
        header_row = layout.header_row_number(matrix)

        self._insert_dimension(tab, row_number)
        while len(matrix) < row_number - 1:
            matrix.append(_padded([]))
        matrix.insert(row_number - 1, _padded([]))
        self._write_row(tab, row_number, values)
        matrix[row_number - 1] = _padded(values)
        logger.info("Inserted booking row %d in %r", row_number, tab.title)

        if row_number > first_row:
            source = row_number - 1
        elif has_rows:
            source = row_number + 1
        else:
            source = header_row
        formatting = self.copy_format(tab, source, row_number)
        return WriteResult(row_number=row_number, tab=tab, formatting=formatting)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def insert_booking(
        self,
        tab: SheetTab,
        matrix: List[List[str]],
        room_id: str,
        start: datetime,
        end: datetime,
        title: str,
    ) -> WriteResult:
        room = self._room(room_id)
        row_number = insertion_row(matrix, start.day, _minutes(start))
        values = booking_row_values(matrix, room, start, end, title)
        return self.insert_row(tab, matrix, row_number, values)

    def locate_booking(
        self,
        matrix: Sequence[Sequence[object]],
        room_id: str,
        day: date,
        start_minutes: int,
        end_minutes: int,
    ) -> List[RowMatch]:
        return locate_booking_rows(matrix, self._room(room_id), day, start_minutes, end_minutes)

    def _remove_match(self, tab: SheetTab, matrix: List[List[str]], room: Room, match: RowMatch) -> None:
        row = _row(matrix, match.row_number)
        remaining = remaining_booking_rows(row, room, match.slot, self._rooms)
        if not remaining:
            self.delete_row(tab, match.row_number)
            del matrix[match.row_number - 1]
            return

        self._write_row(tab, match.row_number, remaining[0])
        matrix[match.row_number - 1] = remaining[0]
        logger.info("Cleared %s from shared row %d of %r", room.id, match.row_number, tab.title)
        if len(remaining) > 1:
            # Directly below keeps the date block together and leaves lower matches untouched.
            self.insert_row(tab, matrix, match.row_number + 1, remaining[1])

    def delete_booking(
        self,
        tab: SheetTab,
        matrix: List[List[str]],
        room_id: str,
        matches: Sequence[RowMatch],
    ) -> List[int]:
        """Remove ``room_id``'s booking from every matched row, highest row first."""

        room = self._room(room_id)
        handled: List[int] = []
        for match in sorted(matches, key=lambda entry: entry.row_number, reverse=True):
            if match.row_number in handled:
                continue
            self._remove_match(tab, matrix, room, match)
            handled.append(match.row_number)
        return handled

    def replace_booking(
        self,
        tab: SheetTab,
        matrix: List[List[str]],
        old_matches: Sequence[RowMatch],
        old_room_id: str,
        room_id: str,
        start: datetime,
        end: datetime,
        title: str,
    ) -> WriteResult:
        """Create the new row first, then delete the stale one.

        ``old_matches`` must have been located before the insert.  A failed
        cleanup is logged and reported in ``WriteResult.cleanup``: a surviving
        duplicate is preferred over losing the booking.
        """

        result = self.insert_booking(tab, matrix, room_id, start, end, title)
        shifted = [
            RowMatch(
                row_number=match.row_number + 1 if result.row_number <= match.row_number else match.row_number,
                slot=match.slot,
            )
            for match in old_matches
        ]
        try:
            self.delete_booking(tab, matrix, old_room_id, shifted)
        except TransientIOError as exc:
            logger.warning(
                "Booking moved to row %d but the old row(s) %s could not be removed: %s",
                result.row_number,
                [match.row_number for match in shifted],
                exc,
            )
            result.cleanup = StepOutcome.failed(exc)
        else:
            result.cleanup = StepOutcome.succeeded()
        return result

    # ------------------------------------------------------------------
    # Fixed schedules
    # ------------------------------------------------------------------
    def _fixed_flags(self, matrix: Sequence[Sequence[object]], room_ids: Sequence[str], known: Mapping[str, str]) -> Dict[str, str]:
        flags: Dict[str, str] = {}
        for room_id in room_ids:
            flags[room_id] = known.get(room_id) or flag_value(matrix, self._room(room_id))
        return flags

    def _free_fixed_row(self, matrix: Sequence[Sequence[object]], exclude: Sequence[int] = ()) -> Optional[int]:
        for row_number in range(1, layout.fixed_region_size(matrix) + 1):
            if row_number in exclude:
                continue
            row = _row(matrix, row_number)
            if layout.is_table_header(row):
                break
            if not any(layout.cell(row, column) for column in range(FIXED_FIRST_COLUMN, layout.COLUMN_COUNT)):
                return row_number
        return None

    def _place_fixed_row(
        self,
        tab: SheetTab,
        matrix: List[List[str]],
        values: Sequence[str],
        exclude: Sequence[int] = (),
    ) -> WriteResult:
        row_number = self._free_fixed_row(matrix, exclude)
        if row_number is not None:
            self._write_row(tab, row_number, values, first_column=FIXED_FIRST_COLUMN)
            while len(matrix) < row_number:
                matrix.append(_padded([]))
            matrix[row_number - 1][FIXED_FIRST_COLUMN:] = list(values)
            logger.info("Wrote fixed schedule into row %d of %r", row_number, tab.title)
            return WriteResult(row_number=row_number, tab=tab)

        row_number = layout.header_row_number(matrix)
        self._insert_dimension(tab, row_number)
        while len(matrix) < row_number - 1:
            matrix.append(_padded([]))
        matrix.insert(row_number - 1, _padded([]))
        self._write_row(tab, row_number, values, first_column=FIXED_FIRST_COLUMN)
        matrix[row_number - 1][FIXED_FIRST_COLUMN:] = list(values)
        logger.info("Fixed schedule region full; inserted row %d above the header of %r", row_number, tab.title)
        formatting = self.copy_format(tab, row_number - 1, row_number)
        return WriteResult(row_number=row_number, tab=tab, formatting=formatting)

    def create_fixed_schedule(
        self,
        tab: SheetTab,
        matrix: List[List[str]],
        staff_name: str,
        room_id: str,
        start_minutes: int,
        end_minutes: int,
        exclude: Sequence[int] = (),
    ) -> WriteResult:
        flags = self._fixed_flags(matrix, [room_id], {})
        pair = (layout.slot_for_start(start_minutes), start_minutes, end_minutes)
        values = fixed_row_values(staff_name, flags, [pair], self._rooms)
        return self._place_fixed_row(tab, matrix, values, exclude)

    def _fixed_entry(self, matrix: Sequence[Sequence[object]], schedule_id: str) -> Tuple[FixedSchedule, FixedRow]:
        schedule = find_fixed_schedule(parse_fixed_schedules(matrix, self._rooms), schedule_id)
        if schedule is None:
            raise FixedScheduleNotFound(f"Fixed schedule {schedule_id} was not found in the sheet")
        for row_number, parsed in scan_fixed_region(matrix, self._rooms):
            if row_number == schedule.row_number:
                return schedule, parsed
        raise FixedScheduleNotFound(f"Fixed schedule {schedule_id} was not found in the sheet")

    def _compact_fixed_region(self, tab: SheetTab, matrix: List[List[str]], row_number: int) -> None:
        """Shift the fixed rows below ``row_number`` up by one, clearing the last."""

        below = [
            number
            for number, parsed in scan_fixed_region(matrix, self._rooms)
            if number > row_number and parsed.is_schedule
        ]
        last = max(below) if below else row_number
        block = [list(_row(matrix, number + 1) or _padded([]))[FIXED_FIRST_COLUMN:] for number in range(row_number, last)]
        block.append([""] * FIXED_WIDTH)
        for offset, values in enumerate(block):
            values.extend([""] * (FIXED_WIDTH - len(values)))
            del values[FIXED_WIDTH:]
            matrix[row_number - 1 + offset][FIXED_FIRST_COLUMN:] = values
        self._client.batch_update_values(
            [{"range": f"{quote_title(tab.title or '')}!C{row_number}:I{last}", "values": block}]
        )
        logger.info("Compacted fixed schedule rows %d-%d of %r", row_number, last, tab.title)

    def _strip_fixed_entry(
        self, tab: SheetTab, matrix: List[List[str]], schedule: FixedSchedule, parsed: FixedRow
    ) -> List[int]:
        """Remove one entry from its row, spilling leftovers into new rows.

        Returns the rows that now hold the leftover entries.
        """

        name_index, pair_index = part_location(schedule.part, len(parsed.pairs))
        name = parsed.staff_names[name_index]
        slot = parsed.pairs[pair_index][0]
        entries = [
            entry
            for entry in row_entries(parsed)
            if not (entry[0] == name and entry[1] == schedule.room_id and entry[2] == slot)
        ]
        packed = pack_fixed_entries(entries)
        row_number = schedule.row_number
        if not packed:
            self._compact_fixed_region(tab, matrix, row_number)
            return []

        rows = [row_number]
        for index, (names, room_ids, pairs) in enumerate(packed):
            flags = self._fixed_flags(matrix, room_ids, parsed.flag_values)
            values = fixed_row_values(" ".join(names), flags, pairs, self._rooms)
            if index == 0:
                self._write_row(tab, row_number, values, first_column=FIXED_FIRST_COLUMN)
                matrix[row_number - 1][FIXED_FIRST_COLUMN:] = values
            else:
                rows.append(self._place_fixed_row(tab, matrix, values).row_number)
        logger.info("Removed %s from fixed schedule row %d of %r", schedule.id, row_number, tab.title)
        return rows

    def delete_fixed_schedule(self, tab: SheetTab, matrix: List[List[str]], schedule_id: str) -> FixedSchedule:
        schedule, parsed = self._fixed_entry(matrix, schedule_id)
        self._strip_fixed_entry(tab, matrix, schedule, parsed)
        return schedule

    def update_fixed_schedule(
        self,
        tab: SheetTab,
        matrix: List[List[str]],
        schedule_id: str,
        staff_name: str,
        room_id: str,
        start_minutes: int,
        end_minutes: int,
    ) -> WriteResult:
        schedule, parsed = self._fixed_entry(matrix, schedule_id)
        if len(row_entries(parsed)) == 1:
            flags = self._fixed_flags(matrix, [room_id], parsed.flag_values)
            pair = (layout.slot_for_start(start_minutes), start_minutes, end_minutes)
            values = fixed_row_values(staff_name, flags, [pair], self._rooms)
            self._write_row(tab, schedule.row_number, values, first_column=FIXED_FIRST_COLUMN)
            matrix[schedule.row_number - 1][FIXED_FIRST_COLUMN:] = values
            logger.info("Rewrote fixed schedule row %d of %r", schedule.row_number, tab.title)
            return WriteResult(row_number=schedule.row_number, tab=tab)

        kept_rows = self._strip_fixed_entry(tab, matrix, schedule, parsed)
        return self.create_fixed_schedule(
            tab, matrix, staff_name, room_id, start_minutes, end_minutes, exclude=kept_rows
        )


__all__ = [
    "DAY_NAMES",
    "GridWriter",
    "RowMatch",
    "booking_row_values",
    "fixed_row_values",
    "flag_value",
    "insertion_row",
    "locate_booking_rows",
    "matched_staff_text",
    "pack_fixed_entries",
    "remaining_booking_rows",
    "require_matches",
    "row_entries",
]
