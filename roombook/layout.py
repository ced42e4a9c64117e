"""Cell layout of a monthly booking tab.

Columns A-I hold ``[date, day-name, staff, room-A flag, room-B flag,
morning-start, morning-end, afternoon-start, afternoon-end]``.  The rows above
the booking-table header are the fixed-schedule region; the header itself is
recognised by its DATE/DAY labels (or a room column reading MEETING ROOM), and
booking rows follow the header block.
"""

from __future__ import annotations

import calendar
import re
from typing import List, Optional, Sequence, Tuple

COL_DATE = 0
COL_DAY = 1
COL_STAFF = 2
COL_ROOM_A = 3
COL_ROOM_B = 4
COL_MORNING_START = 5
COL_MORNING_END = 6
COL_AFTERNOON_START = 7
COL_AFTERNOON_END = 8
COLUMN_COUNT = 9

ROOM_COLUMNS = (COL_ROOM_A, COL_ROOM_B)
TIME_PAIRS = (
    (COL_MORNING_START, COL_MORNING_END),
    (COL_AFTERNOON_START, COL_AFTERNOON_END),
)

# Without a recognisable header the table header is sheet row 5 and the
# writer starts at sheet row 6 (index 5).
DEFAULT_HEADER_ROW = 5
DEFAULT_FIRST_DATA_INDEX = 5
# The public CSV export collapses the header block, so reads start earlier.
DEFAULT_CSV_DATA_INDEX = 4

HEADER_DATE_MARKERS = ("DATE", "NGÀY")
HEADER_DAY_MARKERS = ("DAY", "THỨ")
MEETING_ROOM_MARKER = "MEETING ROOM"
SUB_HEADER_TOKENS = ("START", "END", "MORNING", "AFTERNOON", "FROM", "TO", "TIME")

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_WHITESPACE_RE = re.compile(r"\s+")


def cell(row: Sequence[object], index: int) -> str:
    """Return the stripped text of ``row[index]`` or ``""`` when absent."""

    if index >= len(row):
        return ""
    value = row[index]
    if value is None:
        return ""
    return str(value).strip()


def normalise_label(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip().upper()


def pad_rows(rows: Sequence[Sequence[object]], width: int = COLUMN_COUNT) -> List[List[str]]:
    """Return a rectangular copy of ``rows`` with every cell as text."""

    widest = max([width] + [len(row) for row in rows])
    matrix: List[List[str]] = []
    for row in rows:
        values = ["" if value is None else str(value) for value in row]
        values.extend([""] * (widest - len(values)))
        matrix.append(values)
    return matrix


def is_table_header(row: Sequence[object]) -> bool:
    first = normalise_label(cell(row, COL_DATE))
    second = normalise_label(cell(row, COL_DAY))
    if first in HEADER_DATE_MARKERS or second in HEADER_DAY_MARKERS:
        return True
    if first.startswith("DATE") and second.startswith("DAY"):
        return True
    return any(MEETING_ROOM_MARKER in normalise_label(cell(row, column)) for column in ROOM_COLUMNS)


def find_table_header(matrix: Sequence[Sequence[object]]) -> Optional[int]:
    """Return the 0-based index of the booking-table header row, if any."""

    for index, row in enumerate(matrix):
        if is_table_header(row):
            return index
    return None


def fixed_region_size(matrix: Sequence[Sequence[object]]) -> int:
    """Return how many sheet rows sit above the booking-table header."""

    header = find_table_header(matrix)
    if header is None:
        return DEFAULT_HEADER_ROW - 1
    return header


def _is_sub_header(row: Sequence[object]) -> bool:
    if parse_day_of_month(cell(row, COL_DATE)) is not None:
        return False
    labels = [normalise_label(cell(row, column)) for column in range(COLUMN_COUNT)]
    if not any(labels):
        return False
    if any(parse_time_of_day(cell(row, column)) is not None for column in range(COL_MORNING_START, COLUMN_COUNT)):
        return False
    return any(token in label.split() for label in labels for token in SUB_HEADER_TOKENS) or is_table_header(row)


def first_data_index(matrix: Sequence[Sequence[object]], default: int = DEFAULT_FIRST_DATA_INDEX) -> int:
    """Return the 0-based index of the first booking row after the header block."""

    header = find_table_header(matrix)
    if header is None:
        return default
    index = header + 1
    while index < len(matrix) and _is_sub_header(matrix[index]):
        index += 1
    return index


def header_row_number(matrix: Sequence[Sequence[object]]) -> int:
    """Return the 1-based sheet row of the table header (defaults to row 5)."""

    header = find_table_header(matrix)
    if header is None:
        return DEFAULT_HEADER_ROW
    return header + 1


def parse_time_of_day(value: object) -> Optional[int]:
    """Parse a lenient ``H:mm`` string into minutes since midnight."""

    text = str(value or "").strip()
    match = _TIME_RE.match(text)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_time_of_day(minutes: int) -> str:
    """Format minutes since midnight the way the sheet stores them (``H:mm``)."""

    hours, remainder = divmod(minutes, 60)
    return f"{hours}:{remainder:02d}"


def format_hhmm(minutes: int) -> str:
    hours, remainder = divmod(minutes, 60)
    return f"{hours:02d}:{remainder:02d}"


def parse_day_of_month(value: object, *, year: Optional[int] = None, month: Optional[int] = None) -> Optional[int]:
    """Return the day number in ``value`` or ``None`` when it is not a valid day."""

    text = str(value or "").strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not number.is_integer():
        return None
    day = int(number)
    limit = 31
    if year is not None and month is not None:
        limit = calendar.monthrange(year, month)[1]
    if 1 <= day <= limit:
        return day
    return None


def row_start_minutes(row: Sequence[object]) -> Optional[int]:
    """Return the first parseable start time of a row (morning, then afternoon)."""

    for start_column, _end_column in TIME_PAIRS:
        minutes = parse_time_of_day(cell(row, start_column))
        if minutes is not None:
            return minutes
    return None


def valid_time_pairs(row: Sequence[object]) -> List[Tuple[int, int, int]]:
    """Return ``(slot, start, end)`` for each parseable pair with ``end > start``.

    Slot 0 is the morning pair (F/G), slot 1 the afternoon pair (H/I).
    """

    pairs: List[Tuple[int, int, int]] = []
    for slot, (start_column, end_column) in enumerate(TIME_PAIRS):
        start = parse_time_of_day(cell(row, start_column))
        end = parse_time_of_day(cell(row, end_column))
        if start is None or end is None or end <= start:
            continue
        pairs.append((slot, start, end))
    return pairs


def slot_for_start(minutes: int) -> int:
    """Morning columns hold starts before noon, afternoon columns the rest."""

    return 0 if minutes < 12 * 60 else 1


def is_blank(row: Sequence[object]) -> bool:
    return not any(cell(row, column) for column in range(len(row)))


__all__ = [
    "COLUMN_COUNT",
    "COL_AFTERNOON_END",
    "COL_AFTERNOON_START",
    "COL_DATE",
    "COL_DAY",
    "COL_MORNING_END",
    "COL_MORNING_START",
    "COL_ROOM_A",
    "COL_ROOM_B",
    "COL_STAFF",
    "DEFAULT_CSV_DATA_INDEX",
    "DEFAULT_FIRST_DATA_INDEX",
    "DEFAULT_HEADER_ROW",
    "ROOM_COLUMNS",
    "TIME_PAIRS",
    "cell",
    "find_table_header",
    "first_data_index",
    "format_hhmm",
    "fixed_region_size",
    "format_time_of_day",
    "header_row_number",
    "is_blank",
    "is_table_header",
    "normalise_label",
    "pad_rows",
    "parse_day_of_month",
    "parse_time_of_day",
    "row_start_minutes",
    "slot_for_start",
    "valid_time_pairs",
]
