"""
Shared fixtures: an in-memory SQLite database, users created without running
bcrypt, an in-memory blob store and a fake clock for driving countdowns.
"""

import os

# Must be set before edutest.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["IDENTITY_PROVIDER"] = "database"

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edutest.db.base import Base
from edutest.models.submission import Submission
from edutest.models.test import Test
from edutest.models.user import User
from edutest.schemas.auth import Principal


class MemoryStorage:
    """Blob store kept in a dict; uploads whose data is in ``fail_on`` raise."""

    def __init__(self):
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.fail_on: set[bytes] = set()
        self.deleted: list[tuple[str, str]] = []

    def upload(self, bucket, path, data, content_type=None):
        if data in self.fail_on:
            raise ConnectionError("storage unavailable")
        self.blobs[(bucket, path)] = data
        return f"memory://{bucket}/{path}"

    def delete(self, bucket, path):
        self.blobs.pop((bucket, path), None)
        self.deleted.append((bucket, path))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDocument:
    def __init__(self, page_count: int = 3):
        self.page_count = page_count

    def render_page(self, page_number: int) -> bytes:
        return f"%PDF page {page_number}".encode()


class FakeRenderer:
    """Renderer whose outcome per call is taken from ``outcomes`` (last one repeats)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [FakeDocument()]
        self.calls: list[str] = []

    async def load(self, url):
        self.calls.append(url)
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def no_sleep(seconds):
    return None


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def cleanup_calls(monkeypatch):
    """Record blob cleanups instead of talking to Redis."""
    calls = []

    def fake_schedule(bucket, paths):
        paths = [p for p in paths if p]
        if paths:
            calls.append((bucket, paths))
        return None

    monkeypatch.setattr("edutest.workers.queue.schedule_blob_cleanup", fake_schedule)
    return calls


@pytest.fixture
def failing_submission_insert():
    """Make every submission INSERT fail the way a dropped connection does."""

    def _fail(mapper, connection, target):
        raise OperationalError(
            "INSERT INTO submissions", {}, Exception("server closed the connection unexpectedly")
        )

    event.listen(Submission, "before_insert", _fail)
    yield
    event.remove(Submission, "before_insert", _fail)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    return FakeClock()


def _make_user(db, email, name, role):
    user = User(
        email=email,
        # Pre-hashed password to avoid running bcrypt in tests
        password_hash="$2b$12$hashed_password_001",
        name=name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def teacher(db_session):
    return Principal.model_validate(
        _make_user(db_session, "teacher@test.com", "Test Teacher", "teacher")
    )


@pytest.fixture
def other_teacher(db_session):
    return Principal.model_validate(
        _make_user(db_session, "teacher2@test.com", "Other Teacher", "teacher")
    )


@pytest.fixture
def student(db_session):
    return Principal.model_validate(
        _make_user(db_session, "student@test.com", "Test Student", "student")
    )


@pytest.fixture
def other_student(db_session):
    return Principal.model_validate(
        _make_user(db_session, "student2@test.com", "Other Student", "student")
    )


@pytest.fixture
def make_test(db_session, teacher):
    def _make(num_questions=3, duration_minutes=1, pdf_url=None, title="Algebra quiz"):
        test = Test(
            created_by=teacher.id,
            title=title,
            description="Show your work",
            num_questions=num_questions,
            duration_minutes=duration_minutes,
            pdf_url=pdf_url,
        )
        db_session.add(test)
        db_session.commit()
        db_session.refresh(test)
        return test

    return _make
