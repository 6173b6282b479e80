"""
Test configuration and fixtures for task manager tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users and tasks
"""

import os
import sys
import tempfile
import logging
from datetime import timedelta
from typing import Generator, Dict, Optional

# Settings are read at import time, so the environment must be prepared first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="task-manager-uploads-"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SEED_ADMIN"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.

    Rate limit counters are cleared so every test starts with a full budget.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.rate_limiter.reset()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def create_user(
    db: Session,
    username: str,
    email: str,
    password: str,
    role: models.UserRole = models.UserRole.user,
    first_name: str = "Test",
    last_name: str = "User",
    is_active: bool = True,
) -> models.User:
    user = models.User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {username} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    """
    Create an admin user for testing.
    """
    return create_user(
        test_db, "admin", "admin@test.com", "admin123",
        role=models.UserRole.admin, first_name="Admin", last_name="User",
    )


@pytest.fixture(scope="function")
def regular_user(test_db: Session) -> models.User:
    """
    Create a regular user for testing.
    """
    return create_user(
        test_db, "regular", "user@test.com", "user123",
        first_name="Regular", last_name="User",
    )


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    """
    Create another user for testing multi-user scenarios.
    """
    return create_user(
        test_db, "another", "another@test.com", "another123",
        first_name="Another", last_name="Person",
    )


def create_auth_token(user: models.User, expires_delta: Optional[timedelta] = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    token_data = {
        "sub": str(user.id),
        "role": user.role.value,
    }
    return create_access_token(token_data, expires_delta)


def bearer(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def auth_headers(admin_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers with admin token.
    """
    return bearer(admin_user)


@pytest.fixture(scope="function")
def user_auth_headers(regular_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for regular user.
    """
    return bearer(regular_user)


@pytest.fixture(scope="function")
def another_user_auth_headers(another_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for another user.
    """
    return bearer(another_user)


def make_task(
    db: Session,
    creator: models.User,
    title: str = "Test Task",
    **fields,
) -> models.Task:
    """
    Insert a task row directly, bypassing the API.

    Extra keyword arguments are passed to models.Task (status, priority,
    assigned_to_id, tags, created_at, ...).
    """
    fields.setdefault("tags", [])
    task = models.Task(title=title, created_by_id=creator.id, **fields)
    db.add(task)
    db.commit()
    db.refresh(task)
    return task
