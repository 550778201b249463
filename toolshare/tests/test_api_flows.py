import os
import sys
import unittest
from datetime import date, timedelta
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


os.environ.setdefault("TOOLSHARE_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import ToolShare as app_module
from db.base import Base
from models.lending_models import Tool, User
from services.user_directory_service import UserDirectory


OWNER = {"X-User-Id": "owner-ext"}
BORROWER = {"X-User-Id": "borrower-ext"}
STRANGER = {"X-User-Id": "stranger-ext"}


class ApiFlowTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
        Base.metadata.create_all(self.engine)
        self.session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)()

        owner = User(ExternalID="owner-ext", DisplayName="Olivia Owner")
        borrower = User(ExternalID="borrower-ext", DisplayName="Ben Borrower")
        stranger = User(ExternalID="stranger-ext", DisplayName="Sam Stranger")
        self.session.add_all([owner, borrower, stranger])
        self.session.flush()
        tool = Tool(OwnerID=owner.UserID, ToolName="Tile Saw", Category="Masonry", Status="available", MaxLoanDays=5)
        self.session.add(tool)
        self.session.commit()
        self.owner_id = owner.UserID
        self.tool_id = tool.ToolID

        self.directory = UserDirectory(ttl_seconds=0)
        app_module.app.dependency_overrides[app_module.get_lending_db] = lambda: self.session
        app_module.app.dependency_overrides[app_module.get_user_directory] = lambda: self.directory
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.session.close()
        self.engine.dispose()

    def _create(self, start=2, end=3, headers=BORROWER):
        today = date.today()
        return self.client.post(
            "/api/reservations",
            json={
                "toolId": self.tool_id,
                "startDate": (today + timedelta(days=start)).isoformat(),
                "endDate": (today + timedelta(days=end)).isoformat(),
                "note": "Bathroom floor",
            },
            headers=headers,
        )

    def test_healthchecks(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/api/healthz").status_code, 200)

    def test_missing_identity_is_401(self):
        response = self._create(headers={})
        self.assertEqual(response.status_code, 401)

    def test_unknown_user_is_403(self):
        response = self._create(headers={"X-User-Id": "ghost-ext"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.headers.get("X-Error-Code"), "NotAuthorized")

    def test_create_and_conflict(self):
        created = self._create()
        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["tool"]["name"], "Tile Saw")

        conflict = self._create(start=3, end=4)
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.headers.get("X-Error-Code"), "DateConflict")

    def test_policy_errors_are_400_with_message(self):
        reversed_dates = self._create(start=4, end=2)
        self.assertEqual(reversed_dates.status_code, 400)
        self.assertEqual(reversed_dates.json()["detail"], "End date must be after start date.")

        too_long = self._create(start=1, end=9)
        self.assertEqual(too_long.status_code, 400)
        self.assertEqual(too_long.headers.get("X-Error-Code"), "LoanTooLong")

        own_tool = self._create(headers=OWNER)
        self.assertEqual(own_tool.headers.get("X-Error-Code"), "SelfBooking")

    def test_owner_actions(self):
        reservation_id = self._create().json()["id"]

        forbidden = self.client.post(f"/api/reservations/{reservation_id}/approve", headers=BORROWER)
        self.assertEqual(forbidden.status_code, 403)

        missing_reason = self.client.post(f"/api/reservations/{reservation_id}/decline", json={"reason": ""}, headers=OWNER)
        self.assertEqual(missing_reason.status_code, 422)

        approved = self.client.post(f"/api/reservations/{reservation_id}/approve", json={"note": "Blade is new"}, headers=OWNER)
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "confirmed")
        self.assertEqual(approved.json()["ownerNote"], "Blade is new")

        again = self.client.post(f"/api/reservations/{reservation_id}/approve", headers=OWNER)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.headers.get("X-Error-Code"), "InvalidStateTransition")

    def test_full_loan_and_reviews(self):
        reservation_id = self._create().json()["id"]
        self.client.post(f"/api/reservations/{reservation_id}/approve", headers=OWNER)

        no_photo = self.client.post(f"/api/reservations/{reservation_id}/pickup", headers=BORROWER)
        self.assertEqual(no_photo.status_code, 400)
        self.assertEqual(no_photo.headers.get("X-Error-Code"), "MissingRequiredPhoto")

        photo = self.client.post(
            f"/api/reservations/{reservation_id}/photos",
            json={"type": "before", "url": "https://img.example.test/saw-before.jpg"},
            headers=BORROWER,
        )
        self.assertEqual(photo.status_code, 201)
        self.assertEqual(self.client.post(f"/api/reservations/{reservation_id}/pickup", headers=BORROWER).json()["status"], "active")

        self.client.post(
            f"/api/reservations/{reservation_id}/photos",
            json={"type": "after", "url": "https://img.example.test/saw-after.jpg", "notes": "Clean"},
            headers=BORROWER,
        )
        returned = self.client.post(f"/api/reservations/{reservation_id}/return", headers=BORROWER)
        self.assertEqual(returned.json()["status"], "completed")

        photos = self.client.get(f"/api/reservations/{reservation_id}/photos", headers=OWNER).json()
        self.assertEqual([item["type"] for item in photos], ["before", "after"])

        review = self.client.post(f"/api/reservations/{reservation_id}/review", json={"rating": 4, "comment": "Solid"}, headers=BORROWER)
        self.assertEqual(review.status_code, 201)
        duplicate = self.client.post(f"/api/reservations/{reservation_id}/review", json={"rating": 5}, headers=BORROWER)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.headers.get("X-Error-Code"), "DuplicateReview")

        summary = self.client.get(f"/api/users/{self.owner_id}/reviews", headers=STRANGER).json()
        self.assertEqual(summary["totalReviews"], 1)
        self.assertEqual(summary["averageRating"], 4.0)
        self.assertEqual(summary["reviews"][0]["reviewer"]["displayName"], "Ben Borrower")

    def test_reservation_visibility_and_listing(self):
        reservation_id = self._create().json()["id"]
        self.assertEqual(self.client.get(f"/api/reservations/{reservation_id}", headers=STRANGER).status_code, 403)
        self.assertEqual(self.client.get("/api/reservations/999", headers=OWNER).status_code, 404)

        lent = self.client.get("/api/reservations", params={"role": "lender"}, headers=OWNER).json()
        self.assertEqual(lent["total"], 1)
        self.assertEqual(self.client.get("/api/reservations", params={"role": "nobody"}, headers=OWNER).status_code, 422)

        stats = self.client.get("/api/reservations/stats/dashboard", headers=OWNER).json()
        self.assertEqual(stats, {"toolsListed": 1, "activeLoans": 0, "pendingRequests": 1})

    def test_cancel_by_borrower(self):
        reservation_id = self._create().json()["id"]
        cancelled = self.client.post(f"/api/reservations/{reservation_id}/cancel", json={"reason": "Plans changed"}, headers=BORROWER)
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["status"], "cancelled")
        self.assertEqual(self.client.post(f"/api/reservations/{reservation_id}/cancel", headers=BORROWER).status_code, 400)

    def test_notifications(self):
        self._create()
        listing = self.client.get("/api/notifications", headers=OWNER).json()
        self.assertEqual(listing["unreadCount"], 1)
        self.assertEqual(listing["items"][0]["type"], "reservation_request")
        notification_id = listing["items"][0]["id"]

        self.assertEqual(self.client.post(f"/api/notifications/{notification_id}/read", headers=BORROWER).status_code, 404)
        marked = self.client.post(f"/api/notifications/{notification_id}/read", headers=OWNER)
        self.assertTrue(marked.json()["isRead"])
        self.assertEqual(self.client.get("/api/notifications/unread-count", headers=OWNER).json(), {"count": 0})

        self._create(start=5, end=6)
        self.assertEqual(self.client.post("/api/notifications/read-all", headers=OWNER).json(), {"success": True, "updated": 1})

    def test_run_reminders(self):
        reservation_id = self._create(start=1, end=2).json()["id"]
        self.client.post(f"/api/reservations/{reservation_id}/approve", headers=OWNER)

        first = self.client.post("/api/notifications/run", params={"today": date.today().isoformat()})
        self.assertEqual(first.json()["pickupReminders"], 1)
        second = self.client.post("/api/notifications/run", params={"today": date.today().isoformat()})
        self.assertEqual(second.json()["created"], 0)


if __name__ == "__main__":
    unittest.main()
