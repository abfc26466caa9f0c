"""
Shared fixtures. The environment is pointed at a throwaway data directory
before any project module reads its configuration.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="eduvault-tests-")
os.environ["DATA_DIR"] = _TEST_DATA_DIR
os.environ["DB_PATH"] = os.path.join(_TEST_DATA_DIR, "test.db")
os.environ["UPLOADS_DIR"] = os.path.join(_TEST_DATA_DIR, "uploads")
os.environ["JWT_SECRET"] = "test-secret-that-is-long-enough-for-hs256"
os.environ["MPESA_CONSUMER_KEY"] = "test-key"
os.environ["MPESA_CONSUMER_SECRET"] = "test-secret"
os.environ["MPESA_PASSKEY"] = "test-passkey"

import pytest
from fastapi.testclient import TestClient

from core.config import ASSESSMENT_UPLOADS_DIR
from core.database import db
from core.scheduling import Scheduler
from core.security import create_access_token, new_object_id
from services.auth.user_service import create_user
from services.catalog import repository


class ManualScheduler(Scheduler):
    """Scheduler driven by advance() instead of wall-clock time."""

    def __init__(self):
        self.now = 0.0
        self._timers = {}
        self._next_id = 0

    def call_later(self, delay, callback):
        self._next_id += 1
        self._timers[self._next_id] = [self.now + delay, None, callback]
        return self._next_id

    def call_every(self, interval, callback):
        self._next_id += 1
        self._timers[self._next_id] = [self.now + interval, interval, callback]
        return self._next_id

    def cancel(self, timer_id):
        self._timers.pop(timer_id, None)

    @property
    def pending(self):
        return len(self._timers)

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [(timer[0], timer_id) for timer_id, timer in self._timers.items() if timer[0] <= target]
            if not due:
                break
            when, timer_id = min(due)
            timer = self._timers[timer_id]
            self.now = when
            if timer[1] is None:
                del self._timers[timer_id]
            else:
                timer[0] = when + timer[1]
            timer[2]()
        self.now = target


class FakeSleeper:
    """Records requested delays; optionally reports cancellation on the Nth call."""

    def __init__(self, cancel_on_call=None):
        self.calls = []
        self.cancel_on_call = cancel_on_call

    def __call__(self, seconds, token=None):
        self.calls.append(seconds)
        if self.cancel_on_call is not None and len(self.calls) >= self.cancel_on_call:
            if token is not None:
                token.cancel()
            return False
        return True


@pytest.fixture(autouse=True)
def clean_db():
    db.clear_all()
    yield


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def sleeper():
    return FakeSleeper()


@pytest.fixture
def api():
    from api.main import app
    return TestClient(app)


def make_user(role="student", email=None):
    """Create a user and return (row, bearer token)."""
    user = create_user(
        email=email or f"{role}-{new_object_id()[:8]}@example.com",
        password="secret123",
        first_name="Test",
        last_name=role.replace("_", " ").title(),
        role=role,
    )
    return user, create_access_token(user["user_id"], user["role"])


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def grant_subscription(user_id, course_id, year, semester=None, days=30):
    """Insert a completed subscription directly."""
    now = datetime.now(timezone.utc)
    subscription_id = new_object_id()
    db.execute_write(
        """
        INSERT INTO subscriptions
            (subscription_id, user_id, course_id, year, semester, phone_number, amount, status,
             start_date, end_date)
        VALUES (?, ?, ?, ?, ?, ?, ?, 'completed', ?, ?)
        """,
        (
            subscription_id, user_id, course_id, year, semester, "254712345678", 100,
            now.isoformat(), (now + timedelta(days=days)).isoformat(),
        ),
    )
    return subscription_id


def insert_assessment(course_id, unit_id, type="cats", status="approved", is_premium=True,
                      uploaded_by=None, content=b"\x89PNG fake image", duration=None):
    """Insert an assessment row with a file on disk."""
    assessment_id = new_object_id()
    filename = f"{type}-{assessment_id}.png"
    path = ASSESSMENT_UPLOADS_DIR / filename
    path.write_bytes(content)
    db.execute_write(
        """
        INSERT INTO assessments
            (assessment_id, type, course_id, unit_id, unit_name, title, academic_year, period,
             duration, filename, file_path, status, is_premium, uploaded_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?, '2024/2025', '1', ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            assessment_id, type, course_id, unit_id, "Data Structures", f"{type} 1",
            duration, filename, str(path), status, int(is_premium), uploaded_by,
            datetime.now(timezone.utc).isoformat(),
        ),
    )
    return assessment_id


@pytest.fixture
def catalog():
    """An institution with one course, two years of units, topics and content."""
    institution = repository.create_institution("Test University", short_name="TU")
    course = repository.create_course(institution["id"], "Computer Science", code="CS")
    unit1 = repository.create_unit(course["id"], "CS101", "Data Structures", year=1, semester=1)
    unit2 = repository.create_unit(course["id"], "CS201", "Operating Systems", year=2, semester=1)
    topic1 = repository.create_topic(unit1["id"], "Arrays", number=1)
    topic2 = repository.create_topic(unit2["id"], "Processes", number=1)

    free_video = repository.create_content_asset(
        "video", course["id"], unit1["id"], topic1["id"], "Arrays intro",
        filename="arrays.mp4", status="approved", is_premium=False,
    )
    premium_notes = repository.create_content_asset(
        "notes", course["id"], unit1["id"], topic1["id"], "Arrays notes",
        filename="arrays.pdf", status="approved", is_premium=True,
        access_rules={"preventScreenshot": True},
    )
    premium_video = repository.create_content_asset(
        "video", course["id"], unit2["id"], topic2["id"], "Processes lecture",
        filename="processes.mp4", status="approved", is_premium=True,
    )
    pending_video = repository.create_content_asset(
        "video", course["id"], unit2["id"], topic2["id"], "Draft lecture",
        filename="draft.mp4", status="pending", is_premium=True,
    )
    return {
        "institution": institution,
        "course": course,
        "units": [unit1, unit2],
        "topics": [topic1, topic2],
        "free_video": free_video,
        "premium_notes": premium_notes,
        "premium_video": premium_video,
        "pending_video": pending_video,
    }
