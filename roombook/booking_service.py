"""Public booking API sequencing the locator, reader, checker and writer.

Every mutation follows the same path: validate the request, read the target
tab through the values API, check for conflicts, write, invalidate the local
cache, wait ``refresh_delay_seconds`` and re-fetch.  Nothing is written before
validation and conflict checks have passed.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from roombook import cache as cache_keys
from roombook import conflicts, layout
from roombook.booking_rows import at_minutes, parse_bookings
from roombook.cache import LocalCache
from roombook.credentials import TokenProvider
from roombook.errors import (
    BookingSheetError,
    ConflictError,
    FixedScheduleNotFound,
    TransientIOError,
    ValidationError,
)
from roombook.fixed_schedule_rows import (
    find_fixed_schedule,
    parse_fixed_schedules,
    unique_fixed_schedules,
)
from roombook.grid_reader import GridReader
from roombook.grid_writer import GridWriter, matched_staff_text, require_matches
from roombook.identifiers import (
    booking_id,
    fixed_schedule_id,
    is_occurrence_id,
    parse_booking_id,
    parse_fixed_schedule_id,
)
from roombook.models import (
    DEFAULT_ROOMS,
    Booking,
    BookingRequest,
    FixedSchedule,
    FixedScheduleRequest,
    Room,
    SheetTab,
    StepOutcome,
)
from roombook.sheet_locator import SheetLocator
from roombook.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

GRACE_PERIOD = timedelta(minutes=5)
TIME_SLOTS: Tuple[str, ...] = tuple(
    layout.format_hhmm(minutes) for minutes in range(8 * 60, 18 * 60 + 1, 30)
)

DateLike = Union[date, datetime, str]


@dataclass
class RoomStatus:
    status: str
    booking: Optional[Booking] = None
    next_booking: Optional[Booking] = None

    @property
    def is_occupied(self) -> bool:
        return self.status == "occupied"


def _coerce_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid booking date: {value!r}") from exc


def _minutes(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def _ref_minutes(ref) -> Tuple[int, int]:
    start = layout.parse_time_of_day(ref.start)
    end = layout.parse_time_of_day(ref.end)
    if start is None or end is None or end <= start:
        raise ValidationError(f"Booking id carries an invalid time range: {ref.start}-{ref.end}")
    return start, end


class BookingService:
    """Facade the command line (or any UI) talks to."""

    def __init__(
        self,
        settings,
        rooms: Sequence[Room] = DEFAULT_ROOMS,
        client=None,
        cache: Optional[LocalCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._rooms = tuple(rooms)
        self._clock = clock or datetime.now
        self._sleep = sleep
        if client is None:
            client = SheetsClient(
                settings.require_spreadsheet_id(),
                TokenProvider.from_settings(settings),
            )
        self._client = client
        self._cache = cache if cache is not None else LocalCache(settings.cache_path)
        self._locator = SheetLocator(client, probe_gids=settings.probe_gids, clock=self._clock)
        self._reader = GridReader(client)
        self._writer = GridWriter(client, self._rooms)
        self._refresh_lock = threading.Lock()
        self._refreshing: Dict[str, threading.Thread] = {}

    @property
    def locator(self) -> SheetLocator:
        return self._locator

    @property
    def cache(self) -> LocalCache:
        return self._cache

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _room(self, room_id: str) -> Room:
        for room in self._rooms:
            if room.id == room_id:
                return room
        raise ValidationError(f"Unknown room: {room_id!r}")

    def _today(self) -> date:
        return self._clock().date()

    def _exact_grid(self, month_date: Optional[date] = None) -> Tuple[SheetTab, List[List[str]]]:
        tab = self._locator.resolve_titled(month_date)
        return tab, self._reader.read_exact(tab)

    def _month_bookings(self, matrix: Sequence[Sequence[object]], day: date) -> List[Booking]:
        return parse_bookings(
            matrix,
            day.month,
            day.year,
            self._rooms,
            start_index=layout.first_data_index(matrix),
            include_fixed=False,
        )

    def _validate_booking(self, request: BookingRequest) -> Room:
        room = self._room(request.room_id)
        if request.end <= request.start:
            raise ValidationError("End time must be after start time")
        if request.end.date() != request.start.date():
            raise ValidationError("A booking must start and end on the same day")
        now = self._clock()
        if request.start.date() < now.date():
            raise ValidationError("Cannot book a date in the past")
        if request.start < now - GRACE_PERIOD:
            raise ValidationError("Cannot book a time that has already passed")
        return room

    def _validate_fixed(self, request: FixedScheduleRequest) -> Tuple[int, int]:
        if not request.staff_name:
            raise ValidationError("Staff name is required")
        self._room(request.room_id)
        start = layout.parse_time_of_day(request.start_time)
        end = layout.parse_time_of_day(request.end_time)
        if start is None or end is None:
            raise ValidationError("Times must use the H:mm format")
        if end <= start:
            raise ValidationError("End time must be after start time")
        return start, end

    def _check_booking(
        self,
        matrix: Sequence[Sequence[object]],
        request: BookingRequest,
        *,
        action: str,
        ignore: Optional[Tuple[str, datetime, datetime]] = None,
    ) -> None:
        candidate = conflicts.candidate_booking(request.room_id, request.start, request.end, request.title)
        existing = self._month_bookings(matrix, request.start.date())
        if ignore is not None:
            existing = [
                booking
                for booking in existing
                if (booking.room_id, booking.start, booking.end) != ignore
            ]
        clash = conflicts.check_booking_conflict(candidate, existing)
        if clash is not None:
            detail = conflicts.booking_detail(clash)
            conflicts.record(detail, action=action, requested=candidate.to_dict())
            raise ConflictError(detail)

        schedule = conflicts.check_booking_against_fixed(candidate, parse_fixed_schedules(matrix, self._rooms))
        if schedule is not None:
            detail = conflicts.fixed_detail(schedule)
            conflicts.record(detail, action=action, requested=candidate.to_dict())
            raise ConflictError(detail)

    def _check_fixed(
        self,
        matrix: Sequence[Sequence[object]],
        request: FixedScheduleRequest,
        start: int,
        end: int,
        *,
        verb: str,
        ignore_id: Optional[str] = None,
    ) -> None:
        candidate = conflicts.candidate_fixed_schedule(request.room_id, request.staff_name, start, end)
        detail = conflicts.check_fixed_schedule_conflict(
            candidate,
            self._month_bookings(matrix, self._today()),
            unique_fixed_schedules(parse_fixed_schedules(matrix, self._rooms)),
            ignore_id=ignore_id,
        )
        if detail is not None:
            conflicts.record(detail, action=f"{verb}_fixed_schedule", requested=candidate.to_dict())
            raise ConflictError(detail, f"Cannot {verb} fixed schedule: conflicts with {detail.describe()}")

    def _after_mutation(self) -> None:
        self._cache.invalidate(cache_keys.BOOKINGS, cache_keys.FIXED_SCHEDULES)
        if self._settings.refresh_delay_seconds > 0:
            self._sleep(self._settings.refresh_delay_seconds)
        try:
            self.fetch_bookings()
            self.fetch_fixed_schedules()
        except BookingSheetError as exc:
            logger.warning("Refresh after write failed; the write itself succeeded: %s", exc)

    def _log_result(self, action: str, result) -> None:
        for step, outcome in (("formatting", result.formatting), ("cleanup", result.cleanup)):
            if outcome.attempted and not outcome.ok:
                logger.warning("%s: %s step failed: %s", action, step, outcome.error)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def fetch_rooms(self) -> List[Room]:
        rooms = list(self._rooms)
        self._cache.set(cache_keys.ROOMS, [room.to_dict() for room in rooms])
        return rooms

    def fetch_bookings(self, month_date: Optional[DateLike] = None) -> List[Booking]:
        """Return the bookings of a month (default: the current month).

        Reads go through the public CSV export; fixed schedules are expanded
        into occurrences only when the month is the current one.
        """

        today = self._today()
        target = _coerce_date(month_date) if month_date is not None else today
        tab = self._locator.resolve(target)
        matrix = self._reader.read_public(tab)
        bookings = parse_bookings(matrix, target.month, target.year, self._rooms, today=today)
        if (target.year, target.month) == (today.year, today.month):
            self._cache.set(cache_keys.BOOKINGS, [booking.to_dict() for booking in bookings])
        return bookings

    def fetch_available_time_slots(self) -> List[str]:
        slots = list(TIME_SLOTS)
        self._cache.set(cache_keys.TIME_SLOTS, slots)
        return slots

    def fetch_fixed_schedules(self) -> List[FixedSchedule]:
        if self._client.has_credentials:
            _tab, matrix = self._exact_grid()
        else:
            matrix = self._reader.read_public(self._locator.resolve())
        schedules = parse_fixed_schedules(matrix, self._rooms)
        self._cache.set(cache_keys.FIXED_SCHEDULES, [schedule.to_dict() for schedule in schedules])
        return schedules

    def get_sheet_url(self) -> str:
        try:
            tab = self._locator.resolve()
        except BookingSheetError as exc:
            logger.warning("Failed to resolve the current month's tab, using the base URL: %s", exc)
            return self._client.edit_url()
        return self._client.edit_url(tab.gid)

    def get_room_status(
        self,
        room_id: str,
        bookings: Sequence[Booking],
        now: Optional[datetime] = None,
    ) -> RoomStatus:
        """Return whether ``room_id`` is occupied now and its next booking today."""

        now = now or self._clock()
        todays = [
            booking
            for booking in bookings
            if booking.room_id == room_id and booking.start.date() == now.date()
        ]
        current = next((booking for booking in todays if booking.start <= now < booking.end), None)
        if current is not None:
            return RoomStatus(status="occupied", booking=current, next_booking=current)
        upcoming = sorted((booking for booking in todays if booking.end > now), key=lambda entry: entry.start)
        return RoomStatus(status="available", next_booking=upcoming[0] if upcoming else None)

    # ------------------------------------------------------------------
    # Booking writes
    # ------------------------------------------------------------------
    def create_booking(self, data: Union[Mapping[str, Any], BookingRequest]) -> Booking:
        request = data if isinstance(data, BookingRequest) else BookingRequest.from_mapping(data)
        if request.title is None:
            request = replace(request, title="")
        self._validate_booking(request)

        tab, matrix = self._exact_grid(request.start.date())
        self._check_booking(matrix, request, action="create_booking")

        result = self._writer.insert_booking(tab, matrix, request.room_id, request.start, request.end, request.title)
        self._log_result("create_booking", result)
        self._after_mutation()
        return self._booking_for(request, result.row_number)

    def update_booking(
        self,
        booking_id_value: str,
        booking_date: DateLike,
        data: Union[Mapping[str, Any], BookingRequest],
    ) -> Booking:
        """Move or edit a booking by creating the new row, then deleting the old."""

        if is_occurrence_id(booking_id_value):
            raise ValidationError("Fixed schedule occurrences are edited through the fixed schedule")
        ref = parse_booking_id(booking_id_value, self._rooms)
        day = _coerce_date(booking_date)
        request = data if isinstance(data, BookingRequest) else BookingRequest.from_mapping(data)
        self._validate_booking(request)
        old_start, old_end = _ref_minutes(ref)

        old_tab, old_matrix = self._exact_grid(day)
        matches = require_matches(
            self._writer.locate_booking(old_matrix, ref.room_id, day, old_start, old_end),
            booking_id_value,
        )
        if request.title is None:
            request = replace(request, title=matched_staff_text(old_matrix, matches))

        same_tab = (request.start.year, request.start.month) == (day.year, day.month)
        if same_tab:
            tab, matrix = old_tab, old_matrix
        else:
            tab, matrix = self._exact_grid(request.start.date())
        ignore = (ref.room_id, at_minutes(day, old_start), at_minutes(day, old_end))
        self._check_booking(matrix, request, action="update_booking", ignore=ignore)

        if same_tab:
            result = self._writer.replace_booking(
                tab, matrix, matches, ref.room_id, request.room_id, request.start, request.end, request.title
            )
        else:
            result = self._writer.insert_booking(
                tab, matrix, request.room_id, request.start, request.end, request.title
            )
            try:
                self._writer.delete_booking(old_tab, old_matrix, ref.room_id, matches)
            except TransientIOError as exc:
                logger.warning("Booking moved to %r but the old row could not be removed: %s", tab.title, exc)
                result.cleanup = StepOutcome.failed(exc)
            else:
                result.cleanup = StepOutcome.succeeded()

        self._log_result("update_booking", result)
        self._after_mutation()
        return self._booking_for(request, result.row_number)

    def delete_booking(self, booking_id_value: str, booking_date: DateLike) -> List[int]:
        """Delete every row matching the booking; returns the affected rows."""

        if is_occurrence_id(booking_id_value):
            raise ValidationError(
                "Fixed schedule occurrences cannot be deleted as bookings; delete the fixed schedule instead"
            )
        ref = parse_booking_id(booking_id_value, self._rooms)
        day = _coerce_date(booking_date)
        start, end = _ref_minutes(ref)

        tab, matrix = self._exact_grid(day)
        matches = require_matches(
            self._writer.locate_booking(matrix, ref.room_id, day, start, end), booking_id_value
        )
        rows = self._writer.delete_booking(tab, matrix, ref.room_id, matches)
        self._after_mutation()
        return rows

    def _booking_for(self, request: BookingRequest, row_number: int) -> Booking:
        start_text = layout.format_time_of_day(_minutes(request.start))
        end_text = layout.format_time_of_day(_minutes(request.end))
        return Booking(
            id=booking_id(request.room_id, row_number, start_text, end_text),
            room_id=request.room_id,
            title=request.title,
            requested_by=request.title or "Unknown",
            start=request.start,
            end=request.end,
            row_number=row_number,
        )

    # ------------------------------------------------------------------
    # Fixed schedule writes
    # ------------------------------------------------------------------
    def create_fixed_schedule(self, data: Union[Mapping[str, Any], FixedScheduleRequest]) -> FixedSchedule:
        request = data if isinstance(data, FixedScheduleRequest) else FixedScheduleRequest.from_mapping(data)
        start, end = self._validate_fixed(request)

        tab, matrix = self._exact_grid()
        self._check_fixed(matrix, request, start, end, verb="create")

        result = self._writer.create_fixed_schedule(tab, matrix, request.staff_name, request.room_id, start, end)
        self._log_result("create_fixed_schedule", result)
        self._after_mutation()
        return self._schedule_for(request, result.row_number, start, end)

    def update_fixed_schedule(
        self, schedule_id: str, data: Union[Mapping[str, Any], FixedScheduleRequest]
    ) -> FixedSchedule:
        parse_fixed_schedule_id(schedule_id)
        request = data if isinstance(data, FixedScheduleRequest) else FixedScheduleRequest.from_mapping(data)
        start, end = self._validate_fixed(request)

        tab, matrix = self._exact_grid()
        if find_fixed_schedule(parse_fixed_schedules(matrix, self._rooms), schedule_id) is None:
            raise FixedScheduleNotFound(f"Fixed schedule {schedule_id} was not found in the sheet")
        self._check_fixed(matrix, request, start, end, verb="update", ignore_id=schedule_id)

        result = self._writer.update_fixed_schedule(
            tab, matrix, schedule_id, request.staff_name, request.room_id, start, end
        )
        self._log_result("update_fixed_schedule", result)
        self._after_mutation()
        return self._schedule_for(request, result.row_number, start, end)

    def delete_fixed_schedule(self, schedule_id: str) -> FixedSchedule:
        parse_fixed_schedule_id(schedule_id)
        tab, matrix = self._exact_grid()
        removed = self._writer.delete_fixed_schedule(tab, matrix, schedule_id)
        self._after_mutation()
        return removed

    @staticmethod
    def _schedule_for(request: FixedScheduleRequest, row_number: int, start: int, end: int) -> FixedSchedule:
        return FixedSchedule(
            id=fixed_schedule_id(row_number, 0, request.room_id),
            room_id=request.room_id,
            staff_name=request.staff_name,
            start_time=layout.format_hhmm(start),
            end_time=layout.format_hhmm(end),
            day_of_week=0,
            row_number=row_number,
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def _fetcher(self, kind: str) -> Callable[[], List[Any]]:
        fetchers: Dict[str, Callable[[], List[Any]]] = {
            cache_keys.ROOMS: self.fetch_rooms,
            cache_keys.BOOKINGS: self.fetch_bookings,
            cache_keys.TIME_SLOTS: self.fetch_available_time_slots,
            cache_keys.FIXED_SCHEDULES: self.fetch_fixed_schedules,
        }
        try:
            return fetchers[kind]
        except KeyError:
            raise KeyError(f"Unknown data kind: {kind}") from None

    def get_cached(self, kind: str) -> Any:
        return self._cache.get(kind)

    def load(self, kind: str, on_refresh: Optional[Callable[[List[Any]], None]] = None) -> Any:
        """Return cached data for ``kind`` at once and refresh it on a daemon thread."""

        fetch = self._fetcher(kind)
        cached = self._cache.get(kind)

        def _refresh() -> None:
            try:
                data = fetch()
            except BookingSheetError as exc:
                logger.warning("Background refresh of %s failed: %s", kind, exc)
                return
            finally:
                with self._refresh_lock:
                    self._refreshing.pop(kind, None)
            if on_refresh is not None:
                on_refresh(data)

        with self._refresh_lock:
            running = self._refreshing.get(kind)
            if running is None or not running.is_alive():
                thread = threading.Thread(target=_refresh, name=f"roombook-refresh-{kind}", daemon=True)
                self._refreshing[kind] = thread
                thread.start()
        return cached

    def wait_for_refresh(self, timeout: Optional[float] = None) -> None:
        with self._refresh_lock:
            threads = list(self._refreshing.values())
        for thread in threads:
            thread.join(timeout)

    def invalidate_cache(self) -> None:
        """Forget cached data and resolved tabs; the next read goes to the sheet."""

        self._cache.invalidate()
        self._locator.clear_cache()


__all__ = ["BookingService", "GRACE_PERIOD", "RoomStatus", "TIME_SLOTS"]
