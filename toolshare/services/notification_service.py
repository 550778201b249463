from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from models.lending_models import Notification
from services.lending_store import LendingStore
from services.reservation_policy import normalize_state


NOTIFICATION_LOGGER = logging.getLogger("toolshare.notifications")

NOTIFICATION_TYPES = {
    "reservation_request",
    "reservation_approved",
    "reservation_declined",
    "reservation_cancelled",
    "pickup_reminder",
    "return_reminder",
    "loan_started",
    "loan_completed",
    "review_received",
}
DEFAULT_REMINDER_LEAD_DAYS = 1


class NotificationService:
    """Notification sink.

    ``notify`` stores the notification and logs it. It never raises: a
    failure is logged and rolled back so the caller's state change stands.
    """

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        related_id: int | None = None,
    ) -> bool:
        try:
            if notification_type not in NOTIFICATION_TYPES:
                raise ValueError(f"Unknown notification type: {notification_type}")
            self.db.add(
                Notification(
                    UserID=user_id,
                    NotificationType=notification_type,
                    Title=title,
                    Message=message,
                    RelatedID=related_id,
                    IsRead=False,
                    CreatedAt=datetime.now(),
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            NOTIFICATION_LOGGER.exception(
                "Failed to create notification type=%s user_id=%s related_id=%s",
                notification_type,
                user_id,
                related_id,
            )
            return False
        NOTIFICATION_LOGGER.info(
            "Notification type=%s user_id=%s related_id=%s title=%s",
            notification_type,
            user_id,
            related_id,
            title,
        )
        return True

    def reservation_request(self, owner_id, borrower_name, tool_name, reservation_id, start_date, end_date) -> bool:
        return self.notify(
            owner_id,
            "reservation_request",
            "New Reservation Request",
            f"{borrower_name} wants to borrow your {tool_name} from {start_date} to {end_date}.",
            reservation_id,
        )

    def reservation_approved(self, borrower_id, owner_name, tool_name, reservation_id, start_date) -> bool:
        return self.notify(
            borrower_id,
            "reservation_approved",
            "Reservation Approved",
            f"{owner_name} approved your request to borrow {tool_name}. Pickup starts {start_date}.",
            reservation_id,
        )

    def reservation_declined(self, borrower_id, owner_name, tool_name, reservation_id, reason=None) -> bool:
        message = f"{owner_name} declined your request to borrow {tool_name}."
        if reason:
            message = f"{message[:-1]}. Reason: {reason}"
        return self.notify(borrower_id, "reservation_declined", "Reservation Declined", message, reservation_id)

    def reservation_cancelled(self, recipient_id, canceller_name, tool_name, reservation_id, reason=None) -> bool:
        message = f"{canceller_name} cancelled the reservation for {tool_name}."
        if reason:
            message = f"{message[:-1]}. Reason: {reason}"
        return self.notify(recipient_id, "reservation_cancelled", "Reservation Cancelled", message, reservation_id)

    def loan_started(self, owner_id, borrower_name, tool_name, reservation_id) -> bool:
        return self.notify(
            owner_id,
            "loan_started",
            "Tool Picked Up",
            f"{borrower_name} has picked up your {tool_name}.",
            reservation_id,
        )

    def loan_completed(self, owner_id, borrower_name, tool_name, reservation_id) -> bool:
        return self.notify(
            owner_id,
            "loan_completed",
            "Tool Returned",
            f"{borrower_name} has returned your {tool_name}. Please verify condition and leave a review.",
            reservation_id,
        )

    def review_received(self, user_id, reviewer_name, rating, reservation_id) -> bool:
        return self.notify(
            user_id,
            "review_received",
            "New Review Received",
            f"{reviewer_name} left you a {rating}-star review.",
            reservation_id,
        )

    def pickup_reminder(self, user_id, tool_name, reservation_id, pickup_date) -> bool:
        return self.notify(
            user_id,
            "pickup_reminder",
            "Pickup Reminder",
            f"Reminder: You are scheduled to pick up {tool_name} on {pickup_date}.",
            reservation_id,
        )

    def return_reminder(self, user_id, tool_name, reservation_id, due_date) -> bool:
        return self.notify(
            user_id,
            "return_reminder",
            "Return Reminder",
            f"Reminder: {tool_name} is due to be returned on {due_date}.",
            reservation_id,
        )


def reminder_lead_days() -> int:
    raw = (os.environ.get("REMINDER_LEAD_DAYS") or "").strip()
    if not raw:
        return DEFAULT_REMINDER_LEAD_DAYS
    try:
        return max(0, int(raw))
    except ValueError:
        NOTIFICATION_LOGGER.warning("Ignoring invalid REMINDER_LEAD_DAYS=%r", raw)
        return DEFAULT_REMINDER_LEAD_DAYS


def _already_reminded(db: Session, user_id: int, notification_type: str, reservation_id: int) -> bool:
    stmt = (
        select(func.count(Notification.NotificationID))
        .where(Notification.UserID == user_id)
        .where(Notification.NotificationType == notification_type)
        .where(Notification.RelatedID == reservation_id)
    )
    return int(db.execute(stmt).scalar() or 0) > 0


def queue_due_reminders(db: Session, notifier: NotificationService, today: date | None = None, lead_days: int | None = None) -> dict:
    """Queue pickup reminders for confirmed loans and return reminders for active ones.

    A reservation gets at most one reminder of each kind.
    """
    current = today or date.today()
    window_end = current + timedelta(days=reminder_lead_days() if lead_days is None else lead_days)

    reservations = LendingStore(db).list_reservations_by_status({"confirmed", "active"})

    pickups = 0
    returns = 0
    for reservation in reservations:
        tool_name = reservation.Tool.ToolName if reservation.Tool else f"Tool {reservation.ToolID}"
        status = normalize_state(reservation.Status)
        if status == "confirmed" and current <= reservation.StartDate <= window_end:
            if not _already_reminded(db, reservation.BorrowerID, "pickup_reminder", reservation.ReservationID):
                if notifier.pickup_reminder(reservation.BorrowerID, tool_name, reservation.ReservationID, reservation.StartDate.isoformat()):
                    pickups += 1
        if status == "active" and current <= reservation.EndDate <= window_end:
            if not _already_reminded(db, reservation.BorrowerID, "return_reminder", reservation.ReservationID):
                if notifier.return_reminder(reservation.BorrowerID, tool_name, reservation.ReservationID, reservation.EndDate.isoformat()):
                    returns += 1
    return {"created": pickups + returns, "pickupReminders": pickups, "returnReminders": returns}


def list_notifications(db: Session, user_id: int, limit: int = 50) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.UserID == user_id)
        .order_by(Notification.CreatedAt.desc(), Notification.NotificationID.desc())
        .limit(max(1, int(limit)))
    )
    return list(db.execute(stmt).scalars().all())


def unread_count(db: Session, user_id: int) -> int:
    stmt = (
        select(func.count(Notification.NotificationID))
        .where(Notification.UserID == user_id)
        .where(Notification.IsRead.is_(False))
    )
    return int(db.execute(stmt).scalar() or 0)


def mark_as_read(db: Session, notification_id: int, user_id: int) -> Notification | None:
    notification = db.get(Notification, notification_id)
    if not notification or notification.UserID != user_id:
        return None
    notification.IsRead = True
    db.commit()
    return notification


def mark_all_as_read(db: Session, user_id: int) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.UserID == user_id)
        .where(Notification.IsRead.is_(False))
        .values(IsRead=True)
    )
    db.commit()
    return int(result.rowcount or 0)


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.NotificationID,
        "userId": notification.UserID,
        "type": notification.NotificationType,
        "title": notification.Title,
        "message": notification.Message,
        "relatedId": notification.RelatedID,
        "isRead": bool(notification.IsRead),
        "createdAt": notification.CreatedAt,
    }
