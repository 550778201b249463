from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models.lending_models import AuditLog, LoanPhoto, Reservation, Review, Tool, User
from services.errors import DuplicateReview, InvalidStateTransition, NotFound


class LendingStore:
    """SQLAlchemy-backed storage for tools, reservations, photos and reviews."""

    def __init__(self, db: Session):
        self.db = db

    # tools / users

    def get_tool(self, tool_id: int) -> Tool | None:
        return self.db.get(Tool, tool_id)

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def list_tools_for_owner(self, owner_id: int) -> list[Tool]:
        return list(self.db.execute(select(Tool).where(Tool.OwnerID == owner_id)).scalars().all())

    # reservations

    def get_reservation(self, reservation_id: int) -> Reservation | None:
        stmt = (
            select(Reservation)
            .options(selectinload(Reservation.Tool).selectinload(Tool.Owner))
            .options(selectinload(Reservation.Borrower))
            .where(Reservation.ReservationID == reservation_id)
        )
        return self.db.execute(stmt).scalars().first()

    def require_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        if not reservation:
            raise NotFound("Reservation not found.")
        return reservation

    def list_reservations_for_tool(self, tool_id: int, statuses: set[str] | None = None) -> list[Reservation]:
        stmt = select(Reservation).where(Reservation.ToolID == tool_id)
        if statuses:
            stmt = stmt.where(func.lower(Reservation.Status).in_(sorted(statuses)))
        return list(self.db.execute(stmt).scalars().all())

    def list_reservations_for_borrower(self, borrower_id: int) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .options(selectinload(Reservation.Tool))
            .where(Reservation.BorrowerID == borrower_id)
            .order_by(Reservation.StartDate.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_reservations_for_owner(self, owner_id: int) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .join(Tool, Tool.ToolID == Reservation.ToolID)
            .options(selectinload(Reservation.Tool))
            .where(Tool.OwnerID == owner_id)
            .order_by(Reservation.StartDate.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_reservations_by_status(self, statuses: set[str]) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .options(selectinload(Reservation.Tool))
            .where(func.lower(Reservation.Status).in_(sorted(statuses)))
        )
        return list(self.db.execute(stmt).scalars().all())

    def create_reservation(self, data: dict[str, Any]) -> Reservation:
        now = datetime.now()
        reservation = Reservation(
            ToolID=data["toolID"],
            BorrowerID=data["borrowerID"],
            Status="pending",
            StartDate=data["startDate"],
            EndDate=data["endDate"],
            Note=data.get("note"),
            CreatedDate=now,
            UpdatedDate=now,
        )
        self.db.add(reservation)
        self.db.commit()
        self.db.refresh(reservation)
        return reservation

    def update_reservation(
        self,
        reservation_id: int,
        patch: dict[str, Any],
        expected_status: str | None = None,
    ) -> Reservation:
        """Apply ``patch`` and commit.

        With ``expected_status`` the write is conditional on the stored status,
        so two callers racing on the same reservation cannot both succeed.
        """
        values = dict(patch)
        values["UpdatedDate"] = datetime.now()
        stmt = update(Reservation).where(Reservation.ReservationID == reservation_id)
        if expected_status is not None:
            stmt = stmt.where(Reservation.Status == expected_status)
        result = self.db.execute(stmt.values(**values))
        if result.rowcount == 0:
            self.db.rollback()
            current = self.db.get(Reservation, reservation_id)
            if current is None:
                raise NotFound("Reservation not found.")
            self.db.refresh(current)
            raise InvalidStateTransition(
                f'Reservation changed concurrently; current status is "{current.Status}".'
            )
        self.db.commit()
        reservation = self.get_reservation(reservation_id)
        self.db.refresh(reservation)
        return reservation

    # photos

    def list_photos(self, reservation_id: int, photo_type: str | None = None) -> list[LoanPhoto]:
        stmt = select(LoanPhoto).where(LoanPhoto.ReservationID == reservation_id)
        if photo_type:
            stmt = stmt.where(LoanPhoto.PhotoType == photo_type)
        return list(self.db.execute(stmt.order_by(LoanPhoto.UploadedAt, LoanPhoto.LoanPhotoID)).scalars().all())

    def create_photo(
        self,
        reservation_id: int,
        photo_type: str,
        url: str,
        uploaded_by: int,
        notes: str | None = None,
    ) -> LoanPhoto:
        photo = LoanPhoto(
            ReservationID=reservation_id,
            PhotoType=photo_type,
            Url=url,
            UploadedBy=uploaded_by,
            Notes=notes,
            UploadedAt=datetime.now(),
        )
        self.db.add(photo)
        self.db.commit()
        self.db.refresh(photo)
        return photo

    # reviews

    def get_review_for(self, reservation_id: int, reviewer_id: int) -> Review | None:
        stmt = (
            select(Review)
            .where(Review.ReservationID == reservation_id)
            .where(Review.ReviewerID == reviewer_id)
        )
        return self.db.execute(stmt).scalars().first()

    def create_review(
        self,
        reservation_id: int,
        reviewer_id: int,
        reviewee_id: int,
        rating: int,
        comment: str | None = None,
    ) -> Review:
        review = Review(
            ReservationID=reservation_id,
            ReviewerID=reviewer_id,
            RevieweeID=reviewee_id,
            Rating=rating,
            Comment=comment,
            CreatedDate=datetime.now(),
        )
        self.db.add(review)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateReview("You have already submitted a review for this reservation.") from exc
        self.db.refresh(review)
        return review

    def list_reviews_for(self, user_id: int) -> list[Review]:
        stmt = (
            select(Review)
            .options(selectinload(Review.Reviewer))
            .where(Review.RevieweeID == user_id)
            .order_by(Review.CreatedDate.desc(), Review.ReviewID.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_reviews_for_reservation(self, reservation_id: int) -> list[Review]:
        stmt = (
            select(Review)
            .options(selectinload(Review.Reviewer), selectinload(Review.Reviewee))
            .where(Review.ReservationID == reservation_id)
            .order_by(Review.CreatedDate, Review.ReviewID)
        )
        return list(self.db.execute(stmt).scalars().all())

    def set_reputation_score(self, user_id: int, score: float) -> None:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFound("User not found.")
        user.ReputationScore = score
        user.UpdatedDate = datetime.now()
        self.db.commit()

    # audit

    def log_audit(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        details: str | None = None,
        user_id: int | None = None,
    ) -> None:
        self.db.add(
            AuditLog(
                EntityType=entity_type,
                EntityID=entity_id,
                Action=action,
                Details=details,
                UserID=user_id,
                CreatedAt=datetime.now(),
            )
        )
        self.db.commit()
