"""Error taxonomy for the sheet-backed booking layer.

Every public entry point raises a subclass of :class:`BookingSheetError`, so
callers can render a message without knowing about HTTP or googleapiclient
internals.  Parse-time anomalies are never errors: the row interpreters skip
rows they cannot read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence, Tuple


class BookingSheetError(RuntimeError):
    """Base error raised by the booking layer."""


class ConfigurationError(BookingSheetError):
    """Raised when a required identifier or credential is not configured."""


class AuthError(ConfigurationError):
    """Raised when no usable OAuth credential is available."""


class TransientIOError(BookingSheetError):
    """Raised for network or API failures that the user may retry manually."""


class ValidationError(BookingSheetError, ValueError):
    """Raised when a booking or fixed schedule request is malformed."""


class BookingNotFound(BookingSheetError):
    """Raised when the sheet row backing a booking cannot be located."""


class FixedScheduleNotFound(BookingSheetError):
    """Raised when a fixed schedule identifier no longer matches a sheet row."""


class SheetNotFound(BookingSheetError):
    """Raised when the monthly tab for a requested month does not exist."""

    def __init__(
        self,
        month: int,
        year: int,
        month_name: str,
        suggested_titles: Sequence[str],
        *,
        is_future: bool,
    ) -> None:
        self.month = month
        self.year = year
        self.month_name = month_name
        self.suggested_titles: Tuple[str, ...] = tuple(suggested_titles)
        self.is_future = is_future
        super().__init__(self._render())

    def _render(self) -> str:
        quoted = " or ".join(f'"{title}"' for title in self.suggested_titles)
        if self.is_future:
            return (
                f"Unable to book for {self.month_name} {self.year}. The sheet for this month "
                f"doesn't exist yet. Please create a sheet named {quoted} in your Google "
                "Spreadsheet before booking."
            )
        return (
            f"No sheet was found for {self.month_name} {self.year}. Expected a sheet "
            f"named {quoted}."
        )


@dataclass(frozen=True)
class ConflictDetail:
    """Describes the existing booking or fixed schedule a request collides with."""

    kind: str
    room_id: str
    start: str
    end: str
    name: str
    date: Optional[date] = None

    def describe(self) -> str:
        if self.kind == "fixed_schedule":
            return f"existing fixed schedule ({self.name}) from {self.start} to {self.end}"
        when = self.date.isoformat() if self.date else "an unknown date"
        return f"existing booking on {when} ({self.name}) from {self.start} to {self.end}"


class ConflictError(BookingSheetError):
    """Raised when a request overlaps an existing booking or fixed schedule."""

    def __init__(self, detail: ConflictDetail, message: Optional[str] = None) -> None:
        self.detail = detail
        super().__init__(message or f"Room already booked from {detail.start} to {detail.end}")


__all__ = [
    "AuthError",
    "BookingNotFound",
    "BookingSheetError",
    "ConfigurationError",
    "ConflictDetail",
    "ConflictError",
    "FixedScheduleNotFound",
    "SheetNotFound",
    "TransientIOError",
    "ValidationError",
]
