"""
Pytest configuration and shared fixtures.

Every test gets a fresh SQLite database and a fake email sender; the app's
database and email dependencies are overridden to use them.
"""
import os
import pytest
import pytest_asyncio
from pathlib import Path

# Settings are read once, so configure the environment before any app imports
os.environ["DATABASE_URL"] = "sqlite:///./test_newsletter.db"
os.environ["EMAIL_PROVIDER"] = "disabled"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["FRONTEND_URL"] = "https://newsletter.example.com"

from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from email_service import SendEmailResult


TEST_DATABASE_URL = "sqlite:///./test_newsletter.db"
test_engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override database dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeEmailSender:
    """Records welcome emails instead of sending them."""

    def __init__(self, succeed: bool = True, raises: Exception = None):
        self.succeed = succeed
        self.raises = raises
        self.sent = []

    def send_welcome_email(self, email, unsubscribe_token):
        self.sent.append((email, unsubscribe_token))
        if self.raises:
            raise self.raises
        if self.succeed:
            return SendEmailResult(success=True, message_id="fake-id")
        return SendEmailResult(success=False, error="provider down")


@pytest.fixture
def fake_sender():
    return FakeEmailSender()


@pytest.fixture(autouse=True)
def setup_test_database(fake_sender):
    """Create tables before each test, drop them after, and wire overrides."""
    from database import Base, get_db
    import db_models  # noqa: F401  (registers the models on Base)
    from main import app, provide_email_sender, rate_limiter

    Base.metadata.create_all(bind=test_engine)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[provide_email_sender] = lambda: fake_sender
    rate_limiter.reset()
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session():
    """Get a test database session."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def session_factory():
    """Session factory bound to the test database."""
    return TestSessionLocal


@pytest_asyncio.fixture
async def client():
    """Create an async test client."""
    from main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def pytest_sessionfinish(session, exitstatus):
    """Remove the SQLite file left behind by the test run."""
    test_engine.dispose()
    db_file = Path("./test_newsletter.db")
    if db_file.exists():
        db_file.unlink()
