"""Command line front end for the sheet-backed room booking layer."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, datetime

from roombook.booking_service import BookingService
from roombook.credentials import run_authorization_flow
from roombook.errors import BookingSheetError
from roombook.fixed_schedule_rows import unique_fixed_schedules
from roombook.logging_config import configure_logging
from settings import load_settings


def _service() -> BookingService:
    return BookingService(load_settings())


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _parse_month(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}") from exc


def _at(day: date, clock: str) -> str:
    return f"{day.isoformat()}T{clock}"


def _print_booking(booking) -> None:
    marker = " (fixed)" if booking.is_fixed else ""
    print(
        f"{booking.start:%Y-%m-%d} {booking.start:%H:%M}-{booking.end:%H:%M}  "
        f"{booking.room_id:<10} {booking.display_title}{marker}  [{booking.id}]"
    )


def command_rooms(args: argparse.Namespace) -> int:
    for room in _service().fetch_rooms():
        features = ", ".join(room.features)
        print(f"{room.id:<10} {room.name:<10} capacity {room.capacity:<3} {features}")
    return 0


def command_bookings(args: argparse.Namespace) -> int:
    service = _service()
    bookings = service.fetch_bookings(args.month)
    if args.room:
        bookings = [booking for booking in bookings if booking.room_id == args.room]
    if not args.include_fixed:
        bookings = [booking for booking in bookings if not booking.is_fixed]
    for booking in sorted(bookings, key=lambda entry: (entry.start, entry.room_id)):
        _print_booking(booking)
    if args.status:
        for room in service.fetch_rooms():
            status = service.get_room_status(room.id, bookings)
            upcoming = status.next_booking
            suffix = f", next {upcoming.start:%H:%M}-{upcoming.end:%H:%M}" if upcoming else ""
            print(f"{room.name}: {status.status}{suffix}")
    return 0


def command_slots(args: argparse.Namespace) -> int:
    print(" ".join(_service().fetch_available_time_slots()))
    return 0


def command_fixed(args: argparse.Namespace) -> int:
    for schedule in unique_fixed_schedules(_service().fetch_fixed_schedules()):
        print(
            f"{schedule.start_time}-{schedule.end_time}  {schedule.room_id:<10} "
            f"{schedule.staff_name}  [{schedule.id}]"
        )
    return 0


def command_book(args: argparse.Namespace) -> int:
    booking = _service().create_booking(
        {
            "room_id": args.room,
            "start_time": _at(args.date, args.start),
            "end_time": _at(args.date, args.end),
            "title": args.title,
        }
    )
    print(f"Booked {booking.room_id} {booking.start:%Y-%m-%d %H:%M}-{booking.end:%H:%M} (row {booking.row_number})")
    return 0


def command_move(args: argparse.Namespace) -> int:
    booking = _service().update_booking(
        args.booking_id,
        args.date,
        {
            "room_id": args.room,
            "start_time": _at(args.new_date or args.date, args.start),
            "end_time": _at(args.new_date or args.date, args.end),
            "title": args.title,
        },
    )
    print(f"Moved to {booking.room_id} {booking.start:%Y-%m-%d %H:%M}-{booking.end:%H:%M} (row {booking.row_number})")
    return 0


def command_cancel(args: argparse.Namespace) -> int:
    rows = _service().delete_booking(args.booking_id, args.date)
    print(f"Removed booking from row(s) {', '.join(str(row) for row in rows)}")
    return 0


def command_fixed_add(args: argparse.Namespace) -> int:
    schedule = _service().create_fixed_schedule(
        {"staff_name": args.staff, "room_id": args.room, "start_time": args.start, "end_time": args.end}
    )
    print(f"Added fixed schedule {schedule.id}")
    return 0


def command_fixed_edit(args: argparse.Namespace) -> int:
    schedule = _service().update_fixed_schedule(
        args.schedule_id,
        {"staff_name": args.staff, "room_id": args.room, "start_time": args.start, "end_time": args.end},
    )
    print(f"Updated fixed schedule, now {schedule.id}")
    return 0


def command_fixed_remove(args: argparse.Namespace) -> int:
    schedule = _service().delete_fixed_schedule(args.schedule_id)
    print(f"Removed fixed schedule {schedule.id} ({schedule.staff_name})")
    return 0


def command_url(args: argparse.Namespace) -> int:
    print(_service().get_sheet_url())
    return 0


def command_authorize(args: argparse.Namespace) -> int:
    settings = load_settings()
    token_path = args.token_path or settings.token_path
    run_authorization_flow(args.client_secret, token_path)
    print(f"Authorized. Credentials stored at: {token_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Meeting room bookings kept in a Google Sheet")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the log file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    rooms_parser = subparsers.add_parser("rooms", help="List the bookable rooms")
    rooms_parser.set_defaults(func=command_rooms)

    bookings_parser = subparsers.add_parser("bookings", help="List the bookings of a month")
    bookings_parser.add_argument("--month", type=_parse_month, help="Month as YYYY-MM (default: current)")
    bookings_parser.add_argument("--room", help="Only show this room id")
    bookings_parser.add_argument("--no-fixed", dest="include_fixed", action="store_false", help="Hide fixed schedule occurrences")
    bookings_parser.add_argument("--status", action="store_true", help="Also print whether each room is occupied now")
    bookings_parser.set_defaults(func=command_bookings)

    slots_parser = subparsers.add_parser("slots", help="Print the bookable half-hour slots")
    slots_parser.set_defaults(func=command_slots)

    fixed_parser = subparsers.add_parser("fixed", help="List the fixed schedules of the current month")
    fixed_parser.set_defaults(func=command_fixed)

    book_parser = subparsers.add_parser("book", help="Create a one-off booking")
    book_parser.add_argument("room", help="Room id, e.g. nha-trang")
    book_parser.add_argument("date", type=_parse_day, help="Date as YYYY-MM-DD")
    book_parser.add_argument("start", help="Start time as HH:MM")
    book_parser.add_argument("end", help="End time as HH:MM")
    book_parser.add_argument("--title", default="", help="Staff name shown in the sheet")
    book_parser.set_defaults(func=command_book)

    move_parser = subparsers.add_parser("move", help="Change the room or time of a booking")
    move_parser.add_argument("booking_id")
    move_parser.add_argument("date", type=_parse_day, help="Current date of the booking")
    move_parser.add_argument("room")
    move_parser.add_argument("start")
    move_parser.add_argument("end")
    move_parser.add_argument("--new-date", type=_parse_day, help="Move to another date")
    move_parser.add_argument("--title", help="New staff name; the current one is kept when omitted")
    move_parser.set_defaults(func=command_move)

    cancel_parser = subparsers.add_parser("cancel", help="Delete a booking")
    cancel_parser.add_argument("booking_id")
    cancel_parser.add_argument("date", type=_parse_day, help="Date of the booking")
    cancel_parser.set_defaults(func=command_cancel)

    fixed_add_parser = subparsers.add_parser("fixed-add", help="Add a fixed schedule")
    fixed_add_parser.add_argument("room")
    fixed_add_parser.add_argument("staff")
    fixed_add_parser.add_argument("start")
    fixed_add_parser.add_argument("end")
    fixed_add_parser.set_defaults(func=command_fixed_add)

    fixed_edit_parser = subparsers.add_parser("fixed-edit", help="Edit a fixed schedule")
    fixed_edit_parser.add_argument("schedule_id")
    fixed_edit_parser.add_argument("room")
    fixed_edit_parser.add_argument("staff")
    fixed_edit_parser.add_argument("start")
    fixed_edit_parser.add_argument("end")
    fixed_edit_parser.set_defaults(func=command_fixed_edit)

    fixed_remove_parser = subparsers.add_parser("fixed-remove", help="Remove a fixed schedule")
    fixed_remove_parser.add_argument("schedule_id")
    fixed_remove_parser.set_defaults(func=command_fixed_remove)

    url_parser = subparsers.add_parser("url", help="Print the link to the current month's tab")
    url_parser.set_defaults(func=command_url)

    authorize_parser = subparsers.add_parser("authorize", help="Run the one-off OAuth consent flow")
    authorize_parser.add_argument("client_secret", help="Path to the OAuth client secrets JSON")
    authorize_parser.add_argument("--token-path", help="Where to store the authorized user JSON")
    authorize_parser.set_defaults(func=command_authorize)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        return args.func(args)
    except BookingSheetError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
