from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable

from models.lending_models import LoanPhoto, Reservation, Review
from services.conflict_service import find_conflicts, has_conflict
from services.errors import (
    DateConflict,
    DuplicateReview,
    InvalidPhotoType,
    InvalidStateTransition,
    MissingReason,
    MissingRequiredPhoto,
    NotAuthorized,
    NotFound,
)
from services.reputation_service import recompute_reputation
from services.reservation_policy import (
    BLOCKING_STATES,
    normalize_state,
    validate_new_reservation,
    validate_rating,
    validate_transition,
)


RESERVATION_LOGGER = logging.getLogger("toolshare.reservations")

PHOTO_TYPES = {"before", "after"}
PHOTO_UPLOAD_STATES = {
    "before": {"confirmed", "active"},
    "after": {"active"},
}


class ReservationService:
    """Runs reservation lifecycle commands.

    Every command resolves the caller, checks their role, checks the current
    status, writes the new state and only then fires side effects
    (audit, notifications, reputation). Side-effect failures are logged and
    never undo or fail the command.
    """

    def __init__(self, store, notifier, directory, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.notifier = notifier
        self.directory = directory
        self.clock = clock

    # caller / role helpers

    def _resolve_caller(self, external_id: str | None) -> dict:
        caller = self.directory.resolve(self.store.db, external_id)
        if not caller:
            raise NotAuthorized("User not found. Please complete your profile first.")
        return caller

    def _load(self, reservation_id: int) -> Reservation:
        return self.store.require_reservation(reservation_id)

    @staticmethod
    def _owner_id(reservation: Reservation) -> int | None:
        return reservation.Tool.OwnerID if reservation.Tool else None

    def _require_owner(self, reservation: Reservation, caller: dict, action: str) -> None:
        if self._owner_id(reservation) != caller["userID"]:
            raise NotAuthorized(f"Only the tool owner can {action} reservations.")

    @staticmethod
    def _require_borrower(reservation: Reservation, caller: dict, action: str) -> None:
        if reservation.BorrowerID != caller["userID"]:
            raise NotAuthorized(f"Only the borrower can {action}.")

    def _is_participant(self, reservation: Reservation, user_id: int) -> bool:
        return user_id in (reservation.BorrowerID, self._owner_id(reservation))

    def _side_effect(self, label: str, fn, *args, **kwargs) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            RESERVATION_LOGGER.exception("Side effect %s failed", label)
            # A failed commit leaves the shared session unusable until rolled back.
            self.store.db.rollback()

    def _audit(self, reservation_id: int, action: str, details: str, user_id: int) -> None:
        self._side_effect("audit", self.store.log_audit, "Reservation", reservation_id, action, details, user_id=user_id)

    @staticmethod
    def _tool_name(reservation: Reservation) -> str:
        return reservation.Tool.ToolName if reservation.Tool else f"Tool {reservation.ToolID}"

    # lifecycle commands

    def create_reservation(
        self,
        external_id: str | None,
        tool_id: int,
        start_date: date,
        end_date: date,
        note: str | None = None,
    ) -> Reservation:
        caller = self._resolve_caller(external_id)
        tool = self.store.get_tool(tool_id)
        if not tool:
            raise NotFound("Tool not found.")

        validate_new_reservation(
            start_date=start_date,
            end_date=end_date,
            today=self.clock().date(),
            borrower_id=caller["userID"],
            tool_owner_id=tool.OwnerID,
            tool_status=tool.Status,
            advance_notice_days=tool.AdvanceNoticeDays,
            max_loan_days=tool.MaxLoanDays,
        )

        existing = self.store.list_reservations_for_tool(tool.ToolID, BLOCKING_STATES)
        if has_conflict(tool.ToolID, start_date, end_date, existing):
            raise DateConflict("The requested dates conflict with an existing reservation.")

        reservation = self.store.create_reservation(
            {
                "toolID": tool.ToolID,
                "borrowerID": caller["userID"],
                "startDate": start_date,
                "endDate": end_date,
                "note": note,
            }
        )
        RESERVATION_LOGGER.info(
            "Reservation created id=%s tool_id=%s borrower_id=%s %s..%s",
            reservation.ReservationID,
            tool.ToolID,
            caller["userID"],
            start_date,
            end_date,
        )
        self._side_effect(
            "notify reservation_request",
            self.notifier.reservation_request,
            tool.OwnerID,
            caller["displayName"],
            tool.ToolName,
            reservation.ReservationID,
            start_date.isoformat(),
            end_date.isoformat(),
        )
        self._audit(reservation.ReservationID, "Create", f"Requested {start_date}..{end_date}", caller["userID"])
        return reservation

    def approve_reservation(self, external_id: str | None, reservation_id: int, note: str | None = None) -> Reservation:
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        self._require_owner(reservation, caller, "approve")
        target = validate_transition(reservation.Status, "approve")

        # Another overlapping request may have been approved since this one was made.
        existing = self.store.list_reservations_for_tool(reservation.ToolID, BLOCKING_STATES)
        if has_conflict(reservation.ToolID, reservation.StartDate, reservation.EndDate, existing, exclude_id=reservation.ReservationID):
            conflicting = find_conflicts(
                reservation.ToolID, reservation.StartDate, reservation.EndDate, existing, exclude_id=reservation.ReservationID
            )
            RESERVATION_LOGGER.warning(
                "Approve blocked by conflict id=%s conflicting_ids=%s",
                reservation.ReservationID,
                [item.ReservationID for item in conflicting],
            )
            raise DateConflict("The dates now conflict with another reservation. Please decline this request.")

        patch = {"Status": target}
        if note:
            patch["OwnerNote"] = note
        updated = self._commit_transition(reservation, patch)
        self._side_effect(
            "notify reservation_approved",
            self.notifier.reservation_approved,
            updated.BorrowerID,
            caller["displayName"],
            self._tool_name(updated),
            updated.ReservationID,
            updated.StartDate.isoformat(),
        )
        self._audit(reservation_id, "Approve", f"Approved by {caller['userID']}", caller["userID"])
        return updated

    def decline_reservation(self, external_id: str | None, reservation_id: int, reason: str | None) -> Reservation:
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        self._require_owner(reservation, caller, "decline")
        target = validate_transition(reservation.Status, "decline")
        reason_text = (reason or "").strip()
        if not reason_text:
            raise MissingReason("A reason is required to decline a reservation.")

        updated = self._commit_transition(reservation, {"Status": target, "OwnerNote": reason_text})
        self._side_effect(
            "notify reservation_declined",
            self.notifier.reservation_declined,
            updated.BorrowerID,
            caller["displayName"],
            self._tool_name(updated),
            updated.ReservationID,
            reason_text,
        )
        self._audit(reservation_id, "Decline", f"Declined by {caller['userID']}: {reason_text}", caller["userID"])
        return updated

    def cancel_reservation(self, external_id: str | None, reservation_id: int, reason: str | None = None) -> Reservation:
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        is_borrower = reservation.BorrowerID == caller["userID"]
        is_owner = self._owner_id(reservation) == caller["userID"]
        if not is_borrower and not is_owner:
            raise NotAuthorized("Not authorized to cancel this reservation.")
        target = validate_transition(reservation.Status, "cancel")

        reason_text = (reason or "").strip() or None
        note = reason_text or ("Cancelled by owner" if is_owner else "Cancelled by borrower")
        updated = self._commit_transition(reservation, {"Status": target, "OwnerNote": note})
        recipient_id = updated.BorrowerID if is_owner and not is_borrower else self._owner_id(updated)
        if recipient_id is not None:
            self._side_effect(
                "notify reservation_cancelled",
                self.notifier.reservation_cancelled,
                recipient_id,
                caller["displayName"],
                self._tool_name(updated),
                updated.ReservationID,
                reason_text,
            )
        self._audit(reservation_id, "Cancel", note, caller["userID"])
        return updated

    def confirm_pickup(self, external_id: str | None, reservation_id: int) -> Reservation:
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        self._require_borrower(reservation, caller, "confirm pickup")
        target = validate_transition(reservation.Status, "confirm pickup for")
        if not self.store.list_photos(reservation_id, "before"):
            raise MissingRequiredPhoto('At least one "before" photo is required to confirm pickup.')

        patch = {"Status": target, "PickupConfirmedAt": reservation.PickupConfirmedAt or self.clock()}
        updated = self._commit_transition(reservation, patch)
        self._side_effect(
            "notify loan_started",
            self.notifier.loan_started,
            self._owner_id(updated),
            caller["displayName"],
            self._tool_name(updated),
            updated.ReservationID,
        )
        self._audit(reservation_id, "Pickup", "Pickup confirmed", caller["userID"])
        return updated

    def confirm_return(self, external_id: str | None, reservation_id: int) -> Reservation:
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        self._require_borrower(reservation, caller, "confirm return")
        target = validate_transition(reservation.Status, "confirm return for")
        if not self.store.list_photos(reservation_id, "after"):
            raise MissingRequiredPhoto('At least one "after" photo is required to confirm return.')

        patch = {"Status": target, "ReturnConfirmedAt": reservation.ReturnConfirmedAt or self.clock()}
        updated = self._commit_transition(reservation, patch)
        self._side_effect(
            "notify loan_completed",
            self.notifier.loan_completed,
            self._owner_id(updated),
            caller["displayName"],
            self._tool_name(updated),
            updated.ReservationID,
        )
        self._audit(reservation_id, "Return", "Return confirmed", caller["userID"])
        return updated

    def _commit_transition(self, reservation: Reservation, patch: dict) -> Reservation:
        expected = reservation.Status
        try:
            return self.store.update_reservation(reservation.ReservationID, patch, expected_status=expected)
        except InvalidStateTransition:
            RESERVATION_LOGGER.warning(
                "Lost status race id=%s expected=%s target=%s",
                reservation.ReservationID,
                expected,
                patch.get("Status"),
            )
            raise

    # reviews

    def create_review(
        self,
        external_id: str | None,
        reservation_id: int,
        rating,
        comment: str | None = None,
    ) -> Review:
        value = validate_rating(rating)
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        if not self._is_participant(reservation, caller["userID"]):
            raise NotAuthorized("Only participants in this reservation can leave reviews.")
        if normalize_state(reservation.Status) != "completed":
            raise InvalidStateTransition(
                f'Reviews can only be submitted for completed reservations; current status is "{normalize_state(reservation.Status)}".'
            )

        is_borrower = reservation.BorrowerID == caller["userID"]
        reviewee_id = self._owner_id(reservation) if is_borrower else reservation.BorrowerID
        if reviewee_id is None or reviewee_id == caller["userID"]:
            raise NotAuthorized("Unable to determine reviewee.")

        if self.store.get_review_for(reservation_id, caller["userID"]):
            raise DuplicateReview("You have already submitted a review for this reservation.")

        review = self.store.create_review(reservation_id, caller["userID"], reviewee_id, value, comment)
        RESERVATION_LOGGER.info(
            "Review created id=%s reservation_id=%s reviewer_id=%s reviewee_id=%s rating=%s",
            review.ReviewID,
            reservation_id,
            caller["userID"],
            reviewee_id,
            value,
        )
        self._side_effect("reputation", recompute_reputation, self.store, reviewee_id)
        self._side_effect(
            "notify review_received",
            self.notifier.review_received,
            reviewee_id,
            caller["displayName"],
            value,
            reservation_id,
        )
        return review

    def list_reservation_reviews(self, external_id: str | None, reservation_id: int) -> list[Review]:
        reservation = self.get_reservation(external_id, reservation_id)
        return self.store.list_reviews_for_reservation(reservation.ReservationID)

    # photos

    def record_photo(
        self,
        external_id: str | None,
        reservation_id: int,
        photo_type: str,
        url: str,
        notes: str | None = None,
    ) -> LoanPhoto:
        kind = (photo_type or "").strip().lower()
        if kind not in PHOTO_TYPES:
            raise InvalidPhotoType('Photo type must be "before" or "after".')
        reservation = self._load(reservation_id)
        caller = self._resolve_caller(external_id)
        if not self._is_participant(reservation, caller["userID"]):
            raise NotAuthorized("Only the borrower or tool owner can upload photos.")
        current = normalize_state(reservation.Status)
        if current not in PHOTO_UPLOAD_STATES[kind]:
            allowed = " or ".join(sorted(PHOTO_UPLOAD_STATES[kind]))
            raise InvalidStateTransition(
                f'{kind.capitalize()} photos can only be uploaded for {allowed} reservations; current status is "{current}".'
            )
        photo = self.store.create_photo(reservation_id, kind, url, caller["userID"], notes)
        self._audit(reservation_id, "Photo", f"{kind} photo {photo.LoanPhotoID}", caller["userID"])
        return photo

    def list_photos(self, external_id: str | None, reservation_id: int, photo_type: str | None = None) -> list[LoanPhoto]:
        reservation = self.get_reservation(external_id, reservation_id)
        kind = (photo_type or "").strip().lower() or None
        if kind is not None and kind not in PHOTO_TYPES:
            raise InvalidPhotoType('Photo type must be "before" or "after".')
        return self.store.list_photos(reservation.ReservationID, kind)

    # queries

    def get_reservation(self, external_id: str | None, reservation_id: int) -> Reservation:
        reservation = self._load(reservation_id)
        caller = self.directory.resolve(self.store.db, external_id)
        if not caller or not self._is_participant(reservation, caller["userID"]):
            raise NotAuthorized("Not authorized to view this reservation.")
        return reservation

    def list_reservations(self, external_id: str | None, role: str = "all", status: str | None = None) -> list[Reservation]:
        caller = self.directory.resolve(self.store.db, external_id)
        if not caller:
            return []
        effective_role = (role or "all").strip().lower()
        reservations: list[Reservation] = []
        if effective_role in {"borrower", "all"}:
            reservations.extend(self.store.list_reservations_for_borrower(caller["userID"]))
        if effective_role in {"lender", "all"}:
            seen = {item.ReservationID for item in reservations}
            reservations.extend(
                item for item in self.store.list_reservations_for_owner(caller["userID"]) if item.ReservationID not in seen
            )
        if status:
            wanted = {part.strip().lower() for part in status.split(",") if part.strip()}
            reservations = [item for item in reservations if normalize_state(item.Status) in wanted]
        reservations.sort(key=lambda item: item.StartDate, reverse=True)
        return reservations

    def dashboard_stats(self, external_id: str | None) -> dict:
        caller = self.directory.resolve(self.store.db, external_id)
        if not caller:
            return {"toolsListed": 0, "activeLoans": 0, "pendingRequests": 0}
        user_id = caller["userID"]
        borrowed = self.store.list_reservations_for_borrower(user_id)
        lent = self.store.list_reservations_for_owner(user_id)
        return {
            "toolsListed": len(self.store.list_tools_for_owner(user_id)),
            "activeLoans": sum(1 for item in borrowed if normalize_state(item.Status) == "active"),
            "pendingRequests": sum(1 for item in lent if normalize_state(item.Status) == "pending"),
        }


def serialize_reservation(reservation: Reservation) -> dict:
    tool = reservation.Tool
    return {
        "id": reservation.ReservationID,
        "toolId": reservation.ToolID,
        "borrowerId": reservation.BorrowerID,
        "status": reservation.Status,
        "startDate": reservation.StartDate,
        "endDate": reservation.EndDate,
        "note": reservation.Note,
        "ownerNote": reservation.OwnerNote,
        "pickupConfirmedAt": reservation.PickupConfirmedAt,
        "returnConfirmedAt": reservation.ReturnConfirmedAt,
        "createdAt": reservation.CreatedDate,
        "updatedAt": reservation.UpdatedDate,
        "tool": {
            "id": tool.ToolID,
            "ownerId": tool.OwnerID,
            "name": tool.ToolName,
            "category": tool.Category,
            "status": tool.Status,
        } if tool else None,
    }


def serialize_photo(photo: LoanPhoto) -> dict:
    return {
        "id": photo.LoanPhotoID,
        "reservationId": photo.ReservationID,
        "type": photo.PhotoType,
        "url": photo.Url,
        "uploadedBy": photo.UploadedBy,
        "notes": photo.Notes,
        "uploadedAt": photo.UploadedAt,
    }


def serialize_review(review: Review) -> dict:
    reviewer = review.Reviewer
    return {
        "id": review.ReviewID,
        "reservationId": review.ReservationID,
        "reviewerId": review.ReviewerID,
        "revieweeId": review.RevieweeID,
        "rating": review.Rating,
        "comment": review.Comment,
        "createdAt": review.CreatedDate,
        "reviewer": {
            "id": reviewer.UserID,
            "displayName": reviewer.DisplayName,
        } if reviewer else None,
    }
