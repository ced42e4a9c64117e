"""Interpretation of the fixed-schedule region at the top of a monthly tab.

The region sits above the booking-table header and uses the same columns as
the booking rows: staff in C, the room flags in D/E and up to two time pairs
in F-I.  Merged header cells make the public CSV export glue texts together,
so a staff cell may read ``"Team A Team B BOOKING STAFF"``.  All of those
heuristics live in :func:`interpret_fixed_schedule_row`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from roombook import layout
from roombook.identifiers import fixed_schedule_id
from roombook.models import DEFAULT_ROOMS, FixedSchedule, Room

logger = logging.getLogger(__name__)

SCHEDULE = "schedule"
SKIP = "skip"
TERMINAL = "terminal"

DAYS_OF_WEEK = tuple(range(7))  # 0=Sunday .. 6=Saturday

STAFF_LABEL_RE = re.compile(r"\bBOOKING\s+STAFF\b", re.IGNORECASE)
STAFF_LABELS = {"STAFF", "BOOKING STAFF", "NAME", "FIXED SCHEDULE", "FIXED SCHEDULES"}
TRUE_MARKERS = {"TRUE"}


@dataclass(slots=True)
class FixedRow:
    """What a single sheet row contributes to the fixed-schedule region."""

    kind: str
    staff_names: Tuple[str, ...] = ()
    room_ids: Tuple[str, ...] = ()
    # (slot, start_minutes, end_minutes); slot 0 is morning, 1 is afternoon.
    pairs: Tuple[Tuple[int, int, int], ...] = ()
    flag_values: Dict[str, str] = field(default_factory=dict)

    @property
    def is_schedule(self) -> bool:
        return self.kind == SCHEDULE


def room_flag_matches(value: str, room: Room) -> bool:
    """Return ``True`` when a flag cell marks ``room`` as assigned.

    The dropdowns have drifted between ``TRUE`` and the room name over time,
    so both spellings are accepted, case-insensitively and ignoring extra
    whitespace.
    """

    label = layout.normalise_label(value)
    if not label:
        return False
    if label in TRUE_MARKERS:
        return True
    return layout.normalise_label(room.name) in label or room.sheet_label in label


def split_staff_names(text: str) -> Tuple[str, ...]:
    """Split a staff cell into one or two names, dropping header labels."""

    cleaned = STAFF_LABEL_RE.sub(" ", text or "")
    cleaned = " ".join(cleaned.split())
    if not cleaned or layout.normalise_label(cleaned) in STAFF_LABELS:
        return ()
    tokens = cleaned.split()
    if len(tokens) >= 4 and tokens[0].lower() == "team" and tokens[2].lower() == "team":
        return (" ".join(tokens[0:2]), " ".join(tokens[2:]))
    return (cleaned,)


def interpret_fixed_schedule_row(
    row: Sequence[object], rooms: Sequence[Room] = DEFAULT_ROOMS
) -> FixedRow:
    """Classify one sheet row of the fixed-schedule region.

    ``terminal`` means the booking-table header was reached and scanning must
    stop; ``skip`` covers blank, label-only and incomplete rows.
    """

    if layout.is_table_header(row):
        return FixedRow(kind=TERMINAL)

    names = split_staff_names(layout.cell(row, layout.COL_STAFF))
    if not names:
        return FixedRow(kind=SKIP)

    room_ids: List[str] = []
    flag_values: Dict[str, str] = {}
    for room in rooms:
        value = layout.cell(row, room.flag_column)
        if room_flag_matches(value, room):
            room_ids.append(room.id)
            flag_values[room.id] = value
    if not room_ids:
        return FixedRow(kind=SKIP)

    pairs = tuple(layout.valid_time_pairs(row))
    if not pairs:
        return FixedRow(kind=SKIP)

    return FixedRow(
        kind=SCHEDULE,
        staff_names=names,
        room_ids=tuple(room_ids),
        pairs=pairs,
        flag_values=flag_values,
    )


def entry_part(name_index: int, pair_index: int, pair_count: int) -> int:
    """Ordinal of one (staff, time pair) entry within its sheet row.

    The first entry of a row is part 0, so a plain row keeps the short id.
    """

    return name_index * pair_count + pair_index


def part_location(part: int, pair_count: int) -> Tuple[int, int]:
    """Inverse of :func:`entry_part`: ``(name_index, pair_index)``."""

    return divmod(part, max(1, pair_count))


def schedules_for_row(row_number: int, parsed: FixedRow) -> List[FixedSchedule]:
    """Expand one interpreted row into 7 day-of-week entries per schedule."""

    schedules: List[FixedSchedule] = []
    for name_index, staff in enumerate(parsed.staff_names):
        for room_id in parsed.room_ids:
            for pair_index, (_slot, start, end) in enumerate(parsed.pairs):
                part = entry_part(name_index, pair_index, len(parsed.pairs))
                identifier = fixed_schedule_id(row_number, part, room_id)
                for day in DAYS_OF_WEEK:
                    schedules.append(
                        FixedSchedule(
                            id=identifier,
                            room_id=room_id,
                            staff_name=staff,
                            start_time=layout.format_hhmm(start),
                            end_time=layout.format_hhmm(end),
                            day_of_week=day,
                            row_number=row_number,
                            part=part,
                        )
                    )
    return schedules


def scan_fixed_region(
    matrix: Sequence[Sequence[object]], rooms: Sequence[Room] = DEFAULT_ROOMS
) -> List[Tuple[int, FixedRow]]:
    """Return ``(row_number, FixedRow)`` for every row above the table header.

    Without a recognisable header only the first four rows are scanned, so
    booking rows are never mistaken for fixed schedules.
    """

    scanned: List[Tuple[int, FixedRow]] = []
    for index, row in enumerate(matrix[: layout.fixed_region_size(matrix)]):
        parsed = interpret_fixed_schedule_row(row, rooms)
        if parsed.kind == TERMINAL:
            break
        scanned.append((index + 1, parsed))
    return scanned


def parse_fixed_schedules(
    matrix: Sequence[Sequence[object]], rooms: Sequence[Room] = DEFAULT_ROOMS
) -> List[FixedSchedule]:
    schedules: List[FixedSchedule] = []
    for row_number, parsed in scan_fixed_region(matrix, rooms):
        if parsed.is_schedule:
            schedules.extend(schedules_for_row(row_number, parsed))
    logger.debug("Parsed %d fixed schedule entries", len(schedules))
    return schedules


def unique_fixed_schedules(schedules: Iterable[FixedSchedule]) -> List[FixedSchedule]:
    """Collapse the 7-day expansion to one entry per schedule id."""

    seen = set()
    unique: List[FixedSchedule] = []
    for schedule in schedules:
        if schedule.id in seen:
            continue
        seen.add(schedule.id)
        unique.append(schedule)
    return unique


def find_fixed_schedule(
    schedules: Iterable[FixedSchedule], identifier: str
) -> Optional[FixedSchedule]:
    for schedule in schedules:
        if schedule.id == identifier:
            return schedule
    return None


__all__ = [
    "FixedRow",
    "SCHEDULE",
    "SKIP",
    "TERMINAL",
    "entry_part",
    "find_fixed_schedule",
    "interpret_fixed_schedule_row",
    "parse_fixed_schedules",
    "part_location",
    "room_flag_matches",
    "scan_fixed_region",
    "schedules_for_row",
    "split_staff_names",
    "unique_fixed_schedules",
]
