from __future__ import annotations

from datetime import date
from numbers import Real

from services.errors import (
    InsufficientAdvanceNotice,
    InvalidDateRange,
    InvalidRating,
    InvalidStateTransition,
    LoanTooLong,
    PastStartDate,
    SelfBooking,
    ToolUnavailable,
)


RESERVATION_STATES = {"pending", "confirmed", "active", "completed", "declined", "cancelled"}
TERMINAL_STATES = {"completed", "declined", "cancelled"}
BLOCKING_STATES = {"pending", "confirmed", "active"}
STATE_TRANSITIONS = {
    "pending": {"confirmed", "declined", "cancelled"},
    "confirmed": {"active", "cancelled"},
    "active": {"completed"},
    "completed": set(),
    "declined": set(),
    "cancelled": set(),
}

# command -> (states it may start from, resulting state)
COMMANDS = {
    "approve": ({"pending"}, "confirmed"),
    "decline": ({"pending"}, "declined"),
    "cancel": ({"pending", "confirmed"}, "cancelled"),
    "confirm pickup for": ({"confirmed"}, "active"),
    "confirm return for": ({"active"}, "completed"),
}

MIN_RATING = 1
MAX_RATING = 5


def validate_date_order(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise InvalidDateRange("End date must be after start date.")


def validate_not_in_past(start_date: date, today: date) -> None:
    if start_date < today:
        raise PastStartDate("Start date cannot be in the past.")


def validate_advance_notice(start_date: date, today: date, advance_notice_days: int | None) -> None:
    required = int(advance_notice_days or 0)
    if (start_date - today).days < required:
        raise InsufficientAdvanceNotice(f"This tool requires at least {required} day(s) advance notice.")


def loan_day_count(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days + 1


def validate_max_duration(start_date: date, end_date: date, max_loan_days: int | None) -> None:
    if max_loan_days is None:
        return
    if loan_day_count(start_date, end_date) > int(max_loan_days):
        raise LoanTooLong(f"Maximum loan duration for this tool is {int(max_loan_days)} days.")


def validate_not_own_tool(borrower_id: int, owner_id: int) -> None:
    if borrower_id == owner_id:
        raise SelfBooking("You cannot reserve your own tool.")


def validate_tool_available(tool_status: str | None) -> None:
    if (tool_status or "").strip().lower() != "available":
        raise ToolUnavailable("Tool is not available for reservations.")


def validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, Real):
        raise InvalidRating("Rating must be an integer between 1 and 5.")
    if isinstance(rating, float) and not rating.is_integer():
        raise InvalidRating("Rating must be an integer between 1 and 5.")
    value = int(rating)
    if value < MIN_RATING or value > MAX_RATING:
        raise InvalidRating("Rating must be an integer between 1 and 5.")
    return value


def validate_new_reservation(
    *,
    start_date: date,
    end_date: date,
    today: date,
    borrower_id: int,
    tool_owner_id: int,
    tool_status: str | None,
    advance_notice_days: int | None,
    max_loan_days: int | None,
) -> None:
    """Run every creation-time rule, surfacing the first violation.

    The order is fixed: date order, start not in the past, tool availability,
    self-booking, advance notice, maximum duration.
    """
    validate_date_order(start_date, end_date)
    validate_not_in_past(start_date, today)
    validate_tool_available(tool_status)
    validate_not_own_tool(borrower_id, tool_owner_id)
    validate_advance_notice(start_date, today, advance_notice_days)
    validate_max_duration(start_date, end_date, max_loan_days)


def normalize_state(raw: str | None) -> str:
    return (raw or "pending").strip().lower()


def validate_transition(current_status: str | None, command: str) -> str:
    """Return the target state for ``command`` or raise InvalidStateTransition."""
    allowed_from, target = COMMANDS[command]
    current = normalize_state(current_status)
    if current not in allowed_from or target not in STATE_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(f'Cannot {command} a reservation with status "{current}".')
    return target
