"""Positional identifiers for bookings and fixed schedules.

The sheet has no primary-key column, so identifiers are synthesised from the
room, the sheet row and the time strings.  Row numbers are only a hint: the
public CSV export and the values API may disagree on row indices, so writers
re-locate rows by content before mutating them.  Keeping the scheme in this
module means a hidden id column would only touch this file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from roombook.errors import ValidationError
from roombook.models import Room

FIXED_PREFIX = "fixed-"

_BOOKING_TAIL_RE = re.compile(r"^(\d+)-(\d{1,2}:\d{2}(?::\d{2})?)-(\d{1,2}:\d{2}(?::\d{2})?)$")
_FIXED_RE = re.compile(r"^fixed-(\d+)(?:\.(\d+))?-(.+)$")


@dataclass(frozen=True, slots=True)
class BookingRef:
    room_id: str
    row_number: int
    start: str
    end: str


@dataclass(frozen=True, slots=True)
class FixedScheduleRef:
    row_number: int
    part: int
    room_id: str


def booking_id(room_id: str, row_number: int, start: str, end: str) -> str:
    return f"{room_id}-{row_number}-{start}-{end}"


def parse_booking_id(identifier: str, rooms: Iterable[Room]) -> BookingRef:
    text = (identifier or "").strip()
    # Room ids contain hyphens, so match the known prefixes longest first.
    for room in sorted(rooms, key=lambda entry: len(entry.id), reverse=True):
        prefix = f"{room.id}-"
        if not text.startswith(prefix):
            continue
        match = _BOOKING_TAIL_RE.match(text[len(prefix):])
        if match:
            return BookingRef(
                room_id=room.id,
                row_number=int(match.group(1)),
                start=match.group(2),
                end=match.group(3),
            )
    raise ValidationError(f"Malformed booking id: {identifier!r}")


def fixed_schedule_id(row_number: int, part: int, room_id: str) -> str:
    if part:
        return f"{FIXED_PREFIX}{row_number}.{part}-{room_id}"
    return f"{FIXED_PREFIX}{row_number}-{room_id}"


def parse_fixed_schedule_id(identifier: str) -> FixedScheduleRef:
    match = _FIXED_RE.match((identifier or "").strip())
    if not match:
        raise ValidationError(f"Malformed fixed schedule id: {identifier!r}")
    return FixedScheduleRef(
        row_number=int(match.group(1)),
        part=int(match.group(2) or 0),
        room_id=match.group(3),
    )


def occurrence_id(schedule_id: str, day: date) -> str:
    """Identifier of a fixed schedule materialised on one calendar date."""

    return f"{schedule_id}@{day.isoformat()}"


def is_occurrence_id(identifier: Optional[str]) -> bool:
    return bool(identifier) and str(identifier).startswith(FIXED_PREFIX) and "@" in str(identifier)


__all__ = [
    "BookingRef",
    "FixedScheduleRef",
    "booking_id",
    "fixed_schedule_id",
    "is_occurrence_id",
    "occurrence_id",
    "parse_booking_id",
    "parse_fixed_schedule_id",
]
