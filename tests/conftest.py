"""
NameCard Backend - Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are applied before any app module is imported;
       the database is always a mock session, AWS and Perplexity clients are
       injected fakes.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── mock_db_session: Mock async database session (no real DB needed)
    ├── user: Authenticated local user
    ├── make_card: Factory for fully populated Card rows
    ├── make_image: Factory for real Pillow-encoded image bytes
    ├── temp_storage: Temporary directory for the local storage backend
    └── test_client: HTTPX AsyncClient with auth and DB dependencies overridden
"""

import io
import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio

# Override settings for testing BEFORE any app imports
os.environ["ENVIRONMENT"] = "test"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="namecard_test_")
os.environ["S3_BUCKET_NAME"] = ""
os.environ["PERPLEXITY_API_KEY"] = ""
os.environ["COGNITO_USER_POOL_ID"] = ""
os.environ["COGNITO_CLIENT_ID"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from PIL import Image, ImageDraw  # noqa: E402

from app.models.card import Card  # noqa: E402
from app.models.user import User  # noqa: E402


@pytest.fixture
def mock_db_session():
    """
    A mock AsyncSession: execute, flush, commit, rollback, refresh, delete
    are awaitable; add is synchronous.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = card
    """
    session = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock())
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def user():
    now = datetime.now(timezone.utc)
    return User(
        id=uuid4(),
        cognito_id="cognito-sub-1",
        email="jane@example.com",
        name="Jane Doe",
        tenant_id=uuid4(),
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def make_card(user):
    """Factory for Card rows owned by `user`; keyword overrides win."""

    def _make(**overrides):
        now = datetime.now(timezone.utc)
        values = dict(
            id=uuid4(),
            user_id=user.id,
            tenant_id=user.tenant_id,
            company_id=None,
            original_image_url=None,
            processed_image_url=None,
            thumbnail_url=None,
            extracted_text=None,
            confidence=None,
            name="John Smith",
            title="Senior Software Engineer",
            company="Acme Technologies Inc",
            email="john.smith@acme.com",
            phone="+1 (555) 123-4567",
            address=None,
            website="https://www.acme.com",
            notes=None,
            tags=[],
            scan_date=None,
            last_enrichment_date=None,
            created_at=now,
            updated_at=now,
        )
        values.update(overrides)
        return Card(**values)

    return _make


@pytest.fixture
def make_image():
    """
    Factory for real image bytes.

    The image carries some drawn "text" so encoders do not collapse it to a
    few hundred bytes.
    """

    def _make(width=600, height=350, fmt="JPEG", mode="RGB"):
        image = Image.new(mode, (width, height), "white")
        draw = ImageDraw.Draw(image)
        for y in range(10, height - 10, 24):
            draw.text((12, y), "John Smith  +1 555 123 4567  acme.com", fill="black")
        buffer = io.BytesIO()
        image.save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest_asyncio.fixture
async def test_client(mock_db_session, user):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    get_current_user resolves to `user` and get_db_session yields
    `mock_db_session`; the overrides are removed afterwards.
    """
    from app.database import get_db_session
    from app.dependencies import get_current_user
    from app.main import app

    async def override_db():
        yield mock_db_session

    async def override_user():
        return user

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_current_user] = override_user
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anonymous_client(mock_db_session):
    """Client without the auth override (401 paths)."""
    from app.database import get_db_session
    from app.main import app

    async def override_db():
        yield mock_db_session

    app.dependency_overrides[get_db_session] = override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
