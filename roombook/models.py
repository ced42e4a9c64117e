"""Domain records materialised from the monthly booking sheet."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from roombook.errors import ValidationError


@dataclass(frozen=True, slots=True)
class Room:
    """A bookable room and the sheet column that flags it."""

    id: str
    name: str
    capacity: int
    features: Tuple[str, ...]
    image_url: str
    flag_column: int
    sheet_label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "capacity": self.capacity,
            "features": list(self.features),
            "image_url": self.image_url,
        }


DEFAULT_ROOMS: Tuple[Room, ...] = (
    Room(
        id="nha-trang",
        name="Nha Trang",
        capacity=12,
        features=("Large Room", "TV", "PS4"),
        image_url=(
            "https://images.unsplash.com/photo-1689326232193-d55f0b7965eb"
            "?q=80&w=1287&auto=format&fit=crop"
        ),
        flag_column=3,
        sheet_label="NHA TRANG",
    ),
    Room(
        id="da-lat",
        name="Da Lat",
        capacity=6,
        features=("Small Room",),
        image_url=(
            "https://images.unsplash.com/photo-1609424360486-c5b2636741d1"
            "?q=80&w=2370&auto=format&fit=crop"
        ),
        flag_column=4,
        sheet_label="DA LAT",
    ),
)


@dataclass(frozen=True, slots=True)
class SheetTab:
    """A monthly tab: its numeric gid and, once known, its human title."""

    gid: str
    title: Optional[str] = None


@dataclass(slots=True)
class Booking:
    id: str
    room_id: str
    title: str
    start: datetime
    end: datetime
    requested_by: str = "Unknown"
    is_fixed: bool = False
    row_number: Optional[int] = None

    @property
    def date(self) -> date:
        return self.start.date()

    @property
    def display_title(self) -> str:
        return f"Booked by {self.title}" if self.title else "Booked"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "title": self.title,
            "requested_by": self.requested_by,
            "start_time": self.start.isoformat(),
            "end_time": self.end.isoformat(),
            "is_fixed": self.is_fixed,
            "row_number": self.row_number,
        }


@dataclass(slots=True)
class FixedSchedule:
    """A recurring room assignment; ``day_of_week`` is 0=Sunday .. 6=Saturday."""

    id: str
    room_id: str
    staff_name: str
    start_time: str
    end_time: str
    day_of_week: int
    row_number: int
    part: int = 0

    @property
    def start_minutes(self) -> int:
        return _minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return _minutes(self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "staff_name": self.staff_name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "day_of_week": self.day_of_week,
            "row": self.row_number,
            "part": self.part,
        }


def _minutes(value: str) -> int:
    hours, _, minutes = value.partition(":")
    return int(hours) * 60 + int(minutes)


@dataclass(slots=True)
class BookingRequest:
    """Caller input for creating or replacing a one-off booking.

    A ``title`` of ``None`` means "not given": new bookings get an empty
    staff cell and updates keep the staff text of the row being replaced.
    """

    room_id: str
    start: datetime
    end: datetime
    title: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BookingRequest":
        try:
            start = _coerce_datetime(data.get("start_time", data.get("start")))
            end = _coerce_datetime(data.get("end_time", data.get("end")))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid booking time: {exc}") from exc
        return cls(
            room_id=str(data.get("room_id") or "").strip(),
            start=start,
            end=end,
            title=None if data.get("title") is None else str(data["title"]).strip(),
        )


@dataclass(slots=True)
class FixedScheduleRequest:
    """Caller input for creating or editing a fixed schedule."""

    staff_name: str
    room_id: str
    start_time: str
    end_time: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FixedScheduleRequest":
        return cls(
            staff_name=str(data.get("staff_name") or "").strip(),
            room_id=str(data.get("room_id") or "").strip(),
            start_time=str(data.get("start_time") or "").strip(),
            end_time=str(data.get("end_time") or "").strip(),
        )


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"expected a datetime, got {value!r}")
    if parsed.tzinfo is not None:
        # Sheet times are wall-clock times; keep the local reading.
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed.replace(second=0, microsecond=0)


@dataclass(slots=True)
class StepOutcome:
    """Result of a best-effort sub-step that must never fail the write."""

    attempted: bool = False
    ok: bool = True
    error: Optional[str] = None

    @classmethod
    def skipped(cls) -> "StepOutcome":
        return cls(attempted=False, ok=True)

    @classmethod
    def succeeded(cls) -> "StepOutcome":
        return cls(attempted=True, ok=True)

    @classmethod
    def failed(cls, error: BaseException) -> "StepOutcome":
        return cls(attempted=True, ok=False, error=str(error))


@dataclass(slots=True)
class WriteResult:
    """Outcome of a sheet mutation: the row written plus best-effort steps."""

    row_number: int
    tab: SheetTab
    formatting: StepOutcome = field(default_factory=StepOutcome.skipped)
    cleanup: StepOutcome = field(default_factory=StepOutcome.skipped)

    @property
    def range(self) -> str:
        return f"A{self.row_number}:I{self.row_number}"


__all__ = [
    "Booking",
    "BookingRequest",
    "DEFAULT_ROOMS",
    "FixedSchedule",
    "FixedScheduleRequest",
    "Room",
    "SheetTab",
    "StepOutcome",
    "WriteResult",
]
