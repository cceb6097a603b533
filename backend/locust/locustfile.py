"""
Locust Load Test Suite

Run from backend/ so `app` is importable (tokens are minted locally with
the service's SECRET_KEY, and test data is seeded straight into the DB):

  locust -f locust/locustfile.py --tags contention  # Last-spot race
  locust -f locust/locustfile.py --tags churn       # Cancel + promotion
  locust -f locust/locustfile.py --tags edge        # Bad input
  locust -f locust/locustfile.py                    # All tests

After a contention run, verify:
  SELECT booked_count, capacity FROM class_sessions WHERE id = X;
  SELECT COUNT(*) FROM bookings WHERE class_session_id = X AND status = 'BOOKED';
Both counts must match and never exceed capacity.
"""

import asyncio
import itertools
import os
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

from app.core.security import create_access_token
from app.db.session import SessionLocal, engine
from app.models import ClassSession, Member, UnlimitedMembership

MEMBER_COUNT = int(os.environ.get("LOAD_MEMBER_COUNT", "200"))
CAPACITY = int(os.environ.get("LOAD_CAPACITY", "10"))

# Shared state
CONTENTION_SESSION_ID = None
CHURN_SESSION_ID = None
MEMBER_IDS = []
_member_cycle = None


def member_headers(member_id):
    token = create_access_token({"sub": str(member_id)}, expires_delta=timedelta(hours=2))
    return {"Authorization": f"Bearer {token}"}


def staff_headers():
    token = create_access_token({"staff": True}, expires_delta=timedelta(hours=2))
    return {"Authorization": f"Bearer {token}"}


async def _seed():
    now = datetime.now(timezone.utc)
    async with SessionLocal() as db:
        sessions = [
            ClassSession(
                class_type_id=1,
                location_id=1,
                instructor_id=1,
                starts_at=now + timedelta(days=7),
                ends_at=now + timedelta(days=7, hours=1),
                capacity=CAPACITY,
            )
            for _ in range(2)
        ]
        db.add_all(sessions)

        members = [
            Member(first_name="Load", last_name=f"Member {i}", email=f"load_{now.timestamp():.0f}_{i}@test.com")
            for i in range(MEMBER_COUNT)
        ]
        db.add_all(members)
        await db.flush()

        db.add_all(
            UnlimitedMembership(
                member_id=m.id,
                name="Load test unlimited",
                starts_at=now - timedelta(days=1),
                ends_at=now + timedelta(days=30),
            )
            for m in members
        )
        await db.commit()
        ids = [s.id for s in sessions], [m.id for m in members]
    await engine.dispose()
    return ids


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: two sessions of CAPACITY spots and MEMBER_COUNT entitled members."""
    global CONTENTION_SESSION_ID, CHURN_SESSION_ID, MEMBER_IDS, _member_cycle
    print("\n" + "=" * 60)
    print("SETUP: Seeding load test sessions and members...")
    (CONTENTION_SESSION_ID, CHURN_SESSION_ID), MEMBER_IDS = asyncio.run(_seed())
    _member_cycle = itertools.cycle(MEMBER_IDS)
    print(f"✓ Sessions {CONTENTION_SESSION_ID}, {CHURN_SESSION_ID} with {CAPACITY} spots; {len(MEMBER_IDS)} members")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: MEMBER_COUNT members → CAPACITY spots

    Run: locust -f locust/locustfile.py --tags contention -u 200 -r 50 --run-time 30s

    Every member books the same session once. Exactly CAPACITY end up
    BOOKED; the rest are WAITLISTED at dense positions.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.member_id = next(_member_cycle)
        self.headers = member_headers(self.member_id)
        self.done = False

    @tag("contention")
    @task
    def book_last_spots(self):
        if self.done or not CONTENTION_SESSION_ID:
            return

        with self.client.post("/api/v1/bookings/",
            json={"session_id": CONTENTION_SESSION_ID},
            headers=self.headers,
            name="/api/v1/bookings/ [contention]",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Already booked from a previous iteration
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
        self.done = True


class ChurnUser(HttpUser):
    """
    TEST 2: Book / cancel churn on one session

    Run: locust -f locust/locustfile.py --tags churn -u 100 -r 20 --run-time 60s

    Members repeatedly book and cancel, so every cancellation promotes
    from a live waitlist. Watch session_unit_retries_total and
    session_unit_latency_seconds on /metrics.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.member_id = next(_member_cycle)
        self.headers = member_headers(self.member_id)
        self.booking_id = None

    @tag("churn")
    @task(3)
    def book_or_cancel(self):
        if not CHURN_SESSION_ID:
            return
        if self.booking_id is None:
            resp = self.client.post("/api/v1/bookings/",
                json={"session_id": CHURN_SESSION_ID},
                headers=self.headers,
                name="/api/v1/bookings/ [churn]")
            if resp.status_code == 201:
                self.booking_id = resp.json()["id"]
        else:
            self.client.delete(f"/api/v1/bookings/{self.booking_id}",
                headers=self.headers,
                name="/api/v1/bookings/{id}")
            self.booking_id = None

    @tag("churn", "read")
    @task(2)
    def view_session(self):
        if CHURN_SESSION_ID:
            self.client.get(f"/api/v1/sessions/{CHURN_SESSION_ID}",
                headers=self.headers,
                name="/api/v1/sessions/{id}")

    @tag("churn", "read")
    @task(1)
    def view_waitlist(self):
        if CHURN_SESSION_ID:
            self.client.get(f"/api/v1/sessions/{CHURN_SESSION_ID}/waitlist",
                headers=staff_headers(),
                name="/api/v1/sessions/{id}/waitlist")

    @tag("churn")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locust/locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = member_headers(random.choice(MEMBER_IDS)) if MEMBER_IDS else {}

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_session(self):
        with self.client.post("/api/v1/bookings/",
            json={"session_id": 999999},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def invalid_session_id(self):
        with self.client.post("/api/v1/bookings/",
            json={"session_id": -5},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def early_check_in(self):
        """Check-in days before the class opens its window."""
        with self.client.post("/api/v1/bookings/check-in/lookup",
            json={"member_id": random.choice(MEMBER_IDS), "session_id": CONTENTION_SESSION_ID},
            headers=staff_headers(),
            catch_response=True
        ) as resp:
            self._expect(resp, [404, 422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/",
            json={"session_id": CONTENTION_SESSION_ID},
            catch_response=True
        ) as resp:
            self._expect(resp, [401])
