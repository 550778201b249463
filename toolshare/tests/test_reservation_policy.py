import os
import sys
import unittest
from datetime import date, timedelta
from pathlib import Path


os.environ.setdefault("TOOLSHARE_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

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
from services.reservation_policy import (
    loan_day_count,
    validate_new_reservation,
    validate_rating,
    validate_transition,
)


TODAY = date(2026, 3, 2)


def _check(**overrides):
    params = {
        "start_date": TODAY + timedelta(days=3),
        "end_date": TODAY + timedelta(days=5),
        "today": TODAY,
        "borrower_id": 2,
        "tool_owner_id": 1,
        "tool_status": "available",
        "advance_notice_days": 0,
        "max_loan_days": 7,
    }
    params.update(overrides)
    validate_new_reservation(**params)


class NewReservationRulesTests(unittest.TestCase):
    def test_valid_request_passes(self):
        _check()

    def test_single_day_loan_is_valid(self):
        _check(start_date=TODAY, end_date=TODAY, max_loan_days=1)
        self.assertEqual(loan_day_count(TODAY, TODAY), 1)

    def test_end_before_start_is_rejected(self):
        with self.assertRaises(InvalidDateRange) as ctx:
            _check(start_date=TODAY + timedelta(days=5), end_date=TODAY + timedelta(days=4))
        self.assertEqual(ctx.exception.message, "End date must be after start date.")

    def test_start_in_the_past_is_rejected(self):
        with self.assertRaises(PastStartDate):
            _check(start_date=TODAY - timedelta(days=1), end_date=TODAY + timedelta(days=1))

    def test_advance_notice_message_names_required_days(self):
        with self.assertRaises(InsufficientAdvanceNotice) as ctx:
            _check(start_date=TODAY + timedelta(days=3), end_date=TODAY + timedelta(days=4), advance_notice_days=7)
        self.assertIn("7", ctx.exception.message)

    def test_advance_notice_boundary_is_inclusive(self):
        _check(start_date=TODAY + timedelta(days=7), end_date=TODAY + timedelta(days=8), advance_notice_days=7)

    def test_loan_longer_than_max_is_rejected(self):
        with self.assertRaises(LoanTooLong) as ctx:
            _check(start_date=TODAY + timedelta(days=1), end_date=TODAY + timedelta(days=16), max_loan_days=7)
        self.assertIn("7 days", ctx.exception.message)

    def test_loan_of_exactly_max_days_is_allowed(self):
        _check(start_date=TODAY + timedelta(days=1), end_date=TODAY + timedelta(days=7), max_loan_days=7)

    def test_own_tool_is_rejected(self):
        with self.assertRaises(SelfBooking):
            _check(borrower_id=1, tool_owner_id=1)

    def test_unavailable_tool_is_rejected(self):
        for status in ("unavailable", "archived", None):
            with self.subTest(status=status):
                with self.assertRaises(ToolUnavailable):
                    _check(tool_status=status)

    def test_first_violation_wins(self):
        # Past start and reversed dates together: the date order check runs first.
        with self.assertRaises(InvalidDateRange):
            _check(start_date=TODAY - timedelta(days=1), end_date=TODAY - timedelta(days=3))
        # Unavailable own tool: availability is reported before self-booking.
        with self.assertRaises(ToolUnavailable):
            _check(borrower_id=1, tool_owner_id=1, tool_status="archived")
        # Own tool with too little notice: self-booking before advance notice.
        with self.assertRaises(SelfBooking):
            _check(borrower_id=1, tool_owner_id=1, advance_notice_days=30)
        # Short notice and too long: advance notice before duration.
        with self.assertRaises(InsufficientAdvanceNotice):
            _check(end_date=TODAY + timedelta(days=40), advance_notice_days=10)


class RatingTests(unittest.TestCase):
    def test_accepts_integers_in_range(self):
        for rating in (1, 3, 5, 4.0):
            with self.subTest(rating=rating):
                self.assertEqual(validate_rating(rating), int(rating))

    def test_rejects_out_of_range_and_non_integers(self):
        for rating in (0, 6, -1, 4.5, "5", None, True):
            with self.subTest(rating=rating):
                with self.assertRaises(InvalidRating):
                    validate_rating(rating)


class TransitionTests(unittest.TestCase):
    def test_allowed_transitions(self):
        self.assertEqual(validate_transition("pending", "approve"), "confirmed")
        self.assertEqual(validate_transition("pending", "decline"), "declined")
        self.assertEqual(validate_transition("pending", "cancel"), "cancelled")
        self.assertEqual(validate_transition("confirmed", "cancel"), "cancelled")
        self.assertEqual(validate_transition("confirmed", "confirm pickup for"), "active")
        self.assertEqual(validate_transition("active", "confirm return for"), "completed")

    def test_approve_twice_is_rejected(self):
        with self.assertRaises(InvalidStateTransition) as ctx:
            validate_transition("confirmed", "approve")
        self.assertEqual(ctx.exception.message, 'Cannot approve a reservation with status "confirmed".')

    def test_active_reservation_cannot_be_cancelled(self):
        with self.assertRaises(InvalidStateTransition):
            validate_transition("active", "cancel")

    def test_terminal_states_reject_every_command(self):
        commands = ("approve", "decline", "cancel", "confirm pickup for", "confirm return for")
        for status in ("completed", "declined", "cancelled"):
            for command in commands:
                with self.subTest(status=status, command=command):
                    with self.assertRaises(InvalidStateTransition):
                        validate_transition(status, command)


if __name__ == "__main__":
    unittest.main()
