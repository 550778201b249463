import logging
import os
from datetime import date

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from db.deps import get_lending_db
from schemas.reservations import (
    ActionRequest,
    CancelRequest,
    CreateReservationDto,
    CreateReviewRequest,
    DeclineRequest,
    LoanPhotoRequest,
    ReservationRole,
)
from services.errors import LendingError
from services.lending_store import LendingStore
from services.notification_service import (
    NotificationService,
    list_notifications,
    mark_all_as_read,
    mark_as_read,
    queue_due_reminders,
    serialize_notification,
    unread_count,
)
from services.reputation_service import summarize_reviews
from services.reservation_service import (
    ReservationService,
    serialize_photo,
    serialize_reservation,
    serialize_review,
)
from services.user_directory_service import UserDirectory

app = FastAPI(title="ToolShare Reservations")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

API_LOGGER = logging.getLogger("toolshare.api")
USER_DIRECTORY = UserDirectory()


def get_user_directory() -> UserDirectory:
    return USER_DIRECTORY


def get_reservation_service(
    db: Session = Depends(get_lending_db),
    directory: UserDirectory = Depends(get_user_directory),
) -> ReservationService:
    return ReservationService(LendingStore(db), NotificationService(db), directory)


def _lending_http_error(exc: LendingError) -> HTTPException:
    API_LOGGER.info("Command rejected code=%s detail=%s", exc.code, exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.message, headers={"X-Error-Code": exc.code})


def _require_identity_or_401(external_id: str | None) -> str:
    value = (external_id or "").strip()
    if not value:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return value


def _require_user_or_403(db: Session, directory: UserDirectory, external_id: str | None) -> dict:
    caller = directory.resolve(db, _require_identity_or_401(external_id))
    if not caller:
        raise HTTPException(status_code=403, detail="User not found. Please complete your profile first.")
    return caller


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_lending_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/reservations", status_code=201)
def create_reservation(
    payload: CreateReservationDto,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.create_reservation(
            external_id,
            payload.toolId,
            payload.startDate,
            payload.endDate,
            payload.note,
        )
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.get("/api/reservations")
def get_reservations(
    role: ReservationRole = Query("all"),
    status: str | None = Query(None),
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    items = [serialize_reservation(item) for item in service.list_reservations(external_id, role, status)]
    return {"items": items, "total": len(items)}


@app.get("/api/reservations/stats/dashboard")
def get_dashboard_stats(
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    return service.dashboard_stats(_require_identity_or_401(x_user_id))


@app.get("/api/reservations/{reservation_id}")
def get_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.get_reservation(external_id, reservation_id)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/approve")
def approve_reservation(
    reservation_id: int,
    payload: ActionRequest | None = None,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.approve_reservation(external_id, reservation_id, payload.note if payload else None)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/decline")
def decline_reservation(
    reservation_id: int,
    payload: DeclineRequest,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.decline_reservation(external_id, reservation_id, payload.reason)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/cancel")
def cancel_reservation(
    reservation_id: int,
    payload: CancelRequest | None = None,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.cancel_reservation(external_id, reservation_id, payload.reason if payload else None)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/pickup")
def confirm_pickup(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.confirm_pickup(external_id, reservation_id)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/return")
def confirm_return(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reservation = service.confirm_return(external_id, reservation_id)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/photos", status_code=201)
def record_loan_photo(
    reservation_id: int,
    payload: LoanPhotoRequest,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        photo = service.record_photo(external_id, reservation_id, payload.type, payload.url, payload.notes)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_photo(photo)


@app.get("/api/reservations/{reservation_id}/photos")
def get_loan_photos(
    reservation_id: int,
    photo_type: str | None = Query(None, alias="type"),
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        photos = service.list_photos(external_id, reservation_id, photo_type)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return [serialize_photo(photo) for photo in photos]


@app.post("/api/reservations/{reservation_id}/review", status_code=201)
def create_review(
    reservation_id: int,
    payload: CreateReviewRequest,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        review = service.create_review(external_id, reservation_id, payload.rating, payload.comment)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return serialize_review(review)


@app.get("/api/reservations/{reservation_id}/reviews")
def get_reservation_reviews(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    external_id = _require_identity_or_401(x_user_id)
    try:
        reviews = service.list_reservation_reviews(external_id, reservation_id)
    except LendingError as exc:
        raise _lending_http_error(exc) from exc
    return [serialize_review(review) for review in reviews]


@app.get("/api/users/{user_id}/reviews")
def get_user_reviews(
    user_id: int,
    db: Session = Depends(get_lending_db),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    _require_identity_or_401(x_user_id)
    reviews = LendingStore(db).list_reviews_for(user_id)
    summary = summarize_reviews(reviews)
    return {
        "reviews": [serialize_review(review) for review in reviews],
        "averageRating": summary["averageRating"],
        "totalReviews": summary["totalReviews"],
    }


@app.get("/api/notifications")
def get_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_lending_db),
    directory: UserDirectory = Depends(get_user_directory),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    caller = directory.resolve(db, _require_identity_or_401(x_user_id))
    if not caller:
        return {"items": [], "unreadCount": 0}
    notifications = list_notifications(db, caller["userID"], limit)
    return {
        "items": [serialize_notification(item) for item in notifications],
        "unreadCount": unread_count(db, caller["userID"]),
    }


@app.get("/api/notifications/unread-count")
def get_unread_count(
    db: Session = Depends(get_lending_db),
    directory: UserDirectory = Depends(get_user_directory),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    caller = directory.resolve(db, _require_identity_or_401(x_user_id))
    if not caller:
        return {"count": 0}
    return {"count": unread_count(db, caller["userID"])}


@app.post("/api/notifications/read-all")
def mark_all_notifications_read(
    db: Session = Depends(get_lending_db),
    directory: UserDirectory = Depends(get_user_directory),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    caller = directory.resolve(db, _require_identity_or_401(x_user_id))
    if not caller:
        return {"success": False, "updated": 0}
    return {"success": True, "updated": mark_all_as_read(db, caller["userID"])}


@app.post("/api/notifications/run")
def run_notifications(
    db: Session = Depends(get_lending_db),
    today: date | None = Query(None),
):
    result = queue_due_reminders(db, NotificationService(db), today=today)
    API_LOGGER.info("Reminder run created=%s", result["created"])
    return result


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_lending_db),
    directory: UserDirectory = Depends(get_user_directory),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    caller = _require_user_or_403(db, directory, x_user_id)
    notification = mark_as_read(db, notification_id, caller["userID"])
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return serialize_notification(notification)
