"""
Pytest configuration and fixtures for Movietrack API tests.
"""
import os

# Must be set before the app is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["BACKGROUND_JOBS_ENABLED"] = "false"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import create_tokens, get_password_hash
from app.database import Base, build_engine, get_db
from app.limiter import limiter
from app.main import app
from app.models.movie import Movie
from app.models.user import User
from app.services.cover_image import pending_since
from app.services.mailer import MailError, MailTransport
from app.services.movies import MovieService
from app.services.reminders import ReleaseReminderScheduler
from app.services.storage import StorageError, get_storage

# Disable rate limiting for tests
limiter.enabled = False

TEST_PASSWORD = "Test#Pass123"

# Use in-memory SQLite for tests with shared connection
engine = build_engine("sqlite://", poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    yield _test_session


class FakeStorage:
    """In-memory object storage."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_upload = False
        self.fail_delete = False
        self._counter = 0

    def upload(self, content, content_type, filename, folder=None):
        if self.fail_upload:
            raise StorageError("Failed to upload file: bucket unavailable")
        self._counter += 1
        url = f"https://cdn.test/{folder or 'movie-covers'}/{self._counter}-{filename}"
        self.objects[url] = (content, content_type)
        return url

    def delete(self, url_or_key):
        self.deleted.append(url_or_key)
        if self.fail_delete:
            raise StorageError("Failed to delete file: bucket unavailable")
        self.objects.pop(url_or_key, None)


class FakeMailer(MailTransport):
    """Records sent emails; addresses in ``failing`` raise MailError."""

    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, to_address, subject, html_body):
        if to_address in self.failing:
            raise MailError(f"Failed to send email to {to_address}: mailbox unavailable")
        self.sent.append({"to": to_address, "subject": subject, "html": html_body})
        return {"message_id": f"<{len(self.sent)}@test>"}


class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, now=None):
        self.now = now or datetime(2030, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_movie_data(**overrides):
    data = {
        "title": "Arrival of the Tide",
        "original_title": "Arrival of the Tide",
        "popularity": 12.5,
        "vote_count": 140,
        "score": 78,
        "tagline": "The sea remembers.",
        "synopsis": "A lighthouse keeper finds a message that should not exist.",
        "genres": ["Drama", "Mystery"],
        "release_date": datetime(2020, 5, 1),
        "duration": 110,
        "status": "Released",
        "language": "en",
        "budget": 1000000,
        "revenue": 3000000,
        "profit": 2000000,
        "trailer_url": "https://videos.example.com/tide",
    }
    data.update(overrides)
    return data


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create a session
    _test_session = TestingSessionLocal()

    # Override the get_db dependency
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    # Cleanup
    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None

    # Drop all tables
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def storage(db):
    """Fake object storage wired into the app."""
    fake = FakeStorage()
    app.dependency_overrides[get_storage] = lambda: fake
    return fake


@pytest.fixture(scope="function")
def mailer():
    return FakeMailer()


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def client(db, storage):
    """Create a test client."""
    with TestClient(app) as c:
        yield c


def _create_user(db, name, email):
    user = User(
        name=name,
        email=email,
        hashed_password=get_password_hash(TEST_PASSWORD),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user(db):
    """Create a test user."""
    return _create_user(db, "Test User", "test@example.com")


@pytest.fixture(scope="function")
def other_user(db):
    """Create a second user who owns nothing of the first."""
    return _create_user(db, "Other User", "other@example.com")


def headers_for(user):
    access_token, _ = create_tokens(user.id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture(scope="function")
def auth_headers(test_user):
    """Get auth headers for the test user."""
    return headers_for(test_user)


@pytest.fixture(scope="function")
def other_headers(other_user):
    return headers_for(other_user)


@pytest.fixture(scope="function")
def reminders(db, clock):
    return ReleaseReminderScheduler(db, clock=clock)


@pytest.fixture(scope="function")
def movie_service(db, storage, reminders, clock):
    return MovieService(db, storage=storage, reminders=reminders, clock=clock)


@pytest.fixture(scope="function")
def complete_movie(db, test_user):
    """A movie that already has its cover image."""
    movie = Movie(
        user_id=test_user.id,
        cover_image="https://cdn.test/movie-covers/original.jpg",
        **make_movie_data(title="Complete Movie"),
    )
    db.add(movie)
    db.commit()
    db.refresh(movie)
    return movie


@pytest.fixture(scope="function")
def pending_movie(db, test_user, clock):
    """A movie still waiting for its cover image, created at the clock's now."""
    movie = Movie(
        user_id=test_user.id,
        cover_image=pending_since(clock()).to_column(),
        **make_movie_data(title="Pending Movie"),
    )
    db.add(movie)
    db.commit()
    db.refresh(movie)
    return movie
