from __future__ import annotations


class LendingError(RuntimeError):
    code = "LendingError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LendingError):
    code = "NotFound"
    status_code = 404


class NotAuthorized(LendingError):
    code = "NotAuthorized"
    status_code = 403


class InvalidDateRange(LendingError):
    code = "InvalidDateRange"


class PastStartDate(LendingError):
    code = "PastStartDate"


class InsufficientAdvanceNotice(LendingError):
    code = "InsufficientAdvanceNotice"


class LoanTooLong(LendingError):
    code = "LoanTooLong"


class SelfBooking(LendingError):
    code = "SelfBooking"


class ToolUnavailable(LendingError):
    code = "ToolUnavailable"


class DateConflict(LendingError):
    code = "DateConflict"
    status_code = 409


class InvalidStateTransition(LendingError):
    code = "InvalidStateTransition"


class MissingRequiredPhoto(LendingError):
    code = "MissingRequiredPhoto"


class InvalidPhotoType(LendingError):
    code = "InvalidPhotoType"


class InvalidRating(LendingError):
    code = "InvalidRating"


class DuplicateReview(LendingError):
    code = "DuplicateReview"
    status_code = 409


class MissingReason(LendingError):
    code = "MissingReason"
