"""Overlap checks for bookings and fixed schedules, plus a rejection log.

Every check uses the same half-open rule: ``[s1, e1)`` and ``[s2, e2)``
overlap iff ``s1 < e2 and s2 < e1``.  Fixed schedules recur on every day, so
they are compared by time of day only.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import date, datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional

from roombook import app_paths
from roombook.booking_rows import sunday_based_weekday
from roombook.errors import ConflictDetail
from roombook.layout import format_hhmm
from roombook.models import Booking, FixedSchedule

logger = logging.getLogger(__name__)
_REJECTIONS = logging.getLogger("roombook.conflicts.rejections")
_LOG_READY = False
_CONFLICTS: Deque[Dict[str, object]] = deque(maxlen=50)
_LOCK = threading.Lock()


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    return start_a < end_b and start_b < end_a


def _minutes_of(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def booking_detail(booking: Booking) -> ConflictDetail:
    return ConflictDetail(
        kind="booking",
        room_id=booking.room_id,
        start=booking.start.strftime("%H:%M"),
        end=booking.end.strftime("%H:%M"),
        name=booking.title or booking.requested_by,
        date=booking.start.date(),
    )


def fixed_detail(schedule: FixedSchedule) -> ConflictDetail:
    return ConflictDetail(
        kind="fixed_schedule",
        room_id=schedule.room_id,
        start=schedule.start_time,
        end=schedule.end_time,
        name=schedule.staff_name,
    )


def check_booking_conflict(
    candidate: Booking,
    existing: Iterable[Booking],
    *,
    ignore_ids: Iterable[str] = (),
) -> Optional[Booking]:
    """Return the first same-room, same-date booking overlapping ``candidate``."""

    ignored = set(ignore_ids)
    for booking in existing:
        if booking.id in ignored or booking.room_id != candidate.room_id:
            continue
        if booking.start.date() != candidate.start.date():
            continue
        if overlaps(candidate.start, candidate.end, booking.start, booking.end):
            return booking
    return None


def check_booking_against_fixed(
    candidate: Booking, schedules: Iterable[FixedSchedule]
) -> Optional[FixedSchedule]:
    """Return a fixed schedule recurring on the candidate's weekday that overlaps it."""

    weekday = sunday_based_weekday(candidate.start.date())
    start, end = _minutes_of(candidate.start), _minutes_of(candidate.end)
    for schedule in schedules:
        if schedule.room_id != candidate.room_id or schedule.day_of_week != weekday:
            continue
        if overlaps(start, end, schedule.start_minutes, schedule.end_minutes):
            return schedule
    return None


def check_fixed_schedule_conflict(
    candidate: FixedSchedule,
    existing_bookings: Iterable[Booking],
    existing_fixed_schedules: Iterable[FixedSchedule],
    *,
    ignore_id: Optional[str] = None,
) -> Optional[ConflictDetail]:
    """Check a fixed schedule against one-off bookings and other fixed schedules.

    Each one-off booking of the same room is checked on its own date by time
    of day, since the candidate recurs daily.  Materialised fixed-schedule
    occurrences are skipped; the fixed schedules themselves are compared
    directly.
    """

    start, end = candidate.start_minutes, candidate.end_minutes
    for booking in sorted(existing_bookings, key=lambda entry: entry.start):
        if booking.is_fixed or booking.room_id != candidate.room_id:
            continue
        if overlaps(start, end, _minutes_of(booking.start), _minutes_of(booking.end)):
            return booking_detail(booking)

    for schedule in existing_fixed_schedules:
        if schedule.room_id != candidate.room_id:
            continue
        if ignore_id is not None and schedule.id == ignore_id:
            continue
        if overlaps(start, end, schedule.start_minutes, schedule.end_minutes):
            return fixed_detail(schedule)
    return None


def candidate_booking(room_id: str, start: datetime, end: datetime, title: str = "") -> Booking:
    return Booking(id="", room_id=room_id, title=title, start=start, end=end)


def candidate_fixed_schedule(room_id: str, staff_name: str, start: int, end: int) -> FixedSchedule:
    return FixedSchedule(
        id="",
        room_id=room_id,
        staff_name=staff_name,
        start_time=format_hhmm(start),
        end_time=format_hhmm(end),
        day_of_week=0,
        row_number=0,
    )


def _rejection_logger() -> logging.Logger:
    """Attach ``logs/conflicts.log`` (one JSON object per line) on first use."""

    global _LOG_READY
    with _LOCK:
        if not _LOG_READY:
            _LOG_READY = True
            _REJECTIONS.setLevel(logging.INFO)
            try:
                handler = logging.FileHandler(app_paths.logs_path("conflicts.log"), encoding="utf-8")
            except OSError as exc:
                logger.warning("Conflict log file unavailable, keeping rejections in memory only: %s", exc)
            else:
                handler.setFormatter(logging.Formatter("%(message)s"))
                _REJECTIONS.addHandler(handler)
    return _REJECTIONS


def record(detail: ConflictDetail, *, action: str, requested: Optional[Dict[str, object]] = None) -> None:
    """Append a rejected request to the conflict log and the recent list."""

    timestamp = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    payload: Dict[str, object] = {
        "action": action,
        "kind": detail.kind,
        "room_id": detail.room_id,
        "date": detail.date.isoformat() if isinstance(detail.date, date) else None,
        "start": detail.start,
        "end": detail.end,
        "name": detail.name,
        "timestamp": timestamp,
    }
    if requested:
        payload["requested"] = dict(requested)

    _rejection_logger().info("%s", json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))

    with _LOCK:
        _CONFLICTS.appendleft(payload)


def recent(limit: int = 10) -> List[Dict[str, object]]:
    """Return the most recent rejected requests."""

    with _LOCK:
        return list(list(_CONFLICTS)[:limit])


def clear() -> None:
    """Remove all cached conflict entries."""

    with _LOCK:
        _CONFLICTS.clear()


__all__ = [
    "candidate_booking",
    "candidate_fixed_schedule",
    "check_booking_against_fixed",
    "check_booking_conflict",
    "check_fixed_schedule_conflict",
    "clear",
    "overlaps",
    "recent",
    "record",
]
