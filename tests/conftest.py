import os
import tempfile
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("GALLERY_TOKEN_SECRET", "test-gallery-token-secret")
os.environ.setdefault("UPLOAD_TOKEN_SECRET", "test-upload-token-secret")
os.environ.setdefault("STORAGE_SIGNING_SECRET", "test-storage-signing-secret")
os.environ.setdefault("STORAGE_TYPE", "local")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="twelveimg-media-"))
os.environ.setdefault("LOG_LEVEL", "INFO")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from twelveimg.api.deps import get_current_user, get_optional_user, get_uow, get_upload_rate_limiter
from twelveimg.db.database import get_db
from twelveimg.domain.storage import get_archive_storage, get_images_storage
from twelveimg.main import app
from twelveimg.models.gallery import Gallery
from twelveimg.models.user import User
from twelveimg.services.rate_limit import InMemoryRateLimitStore, RateLimiter


def build_mock_uow():
    uow = MagicMock()
    uow.users = MagicMock()
    uow.galleries = MagicMock()
    uow.images = MagicMock()
    uow.archives = MagicMock()
    uow.rate_limits = MagicMock()
    uow.commit = AsyncMock()
    uow.rollback = AsyncMock()
    uow.flush = AsyncMock()
    uow.refresh = AsyncMock()

    # Setup some default behaviors for repositories to avoid NoneType errors
    uow.galleries.get_by_id = AsyncMock(return_value=None)
    uow.archives.get_by_id = AsyncMock(return_value=None)
    uow.archives.get_by_id_with_gallery = AsyncMock(return_value=None)
    return uow


def uow_factory_for(uow):
    """A ``new_uow`` replacement that always hands out ``uow``."""
    @asynccontextmanager
    async def factory():
        yield uow

    return factory


def build_mock_storage():
    storage = MagicMock()
    storage.bucket_name = "test-bucket"
    storage.read_bytes = AsyncMock(return_value=b"image-bytes")
    storage.upload_fileobj = AsyncMock(return_value=0)
    storage.exists = AsyncMock(return_value=True)
    storage.delete_file = AsyncMock(return_value=True)
    storage.generate_upload_url = MagicMock(
        side_effect=lambda path, content_type, expires_in: f"https://storage.test/upload/{path}"
    )
    storage.generate_download_url = MagicMock(
        side_effect=lambda path, expires_in, filename=None: f"https://storage.test/download/{path}"
    )
    return storage


@pytest.fixture
def mock_db_session():
    return AsyncMock()


@pytest.fixture
def mock_uow():
    return build_mock_uow()


@pytest.fixture
def mock_storage():
    return build_mock_storage()


@pytest.fixture
def mock_archive_storage():
    return build_mock_storage()


@pytest.fixture
def mock_user():
    return User(id=uuid.uuid4(), auth_subject="user|123", email="photographer@example.com", plan="free")


@pytest.fixture
def mock_gallery(mock_user):
    return Gallery(id=uuid.uuid4(), user_id=mock_user.id, title="Wedding", cover_image_id=None, download_enabled=True)


@pytest.fixture
def rate_limiter():
    return RateLimiter(InMemoryRateLimitStore(), limit=100, window_seconds=60, scope="test")


@pytest_asyncio.fixture
async def client(mock_db_session, mock_uow, mock_storage, mock_archive_storage, rate_limiter) -> AsyncGenerator[AsyncClient, None]:
    # Override dependencies
    async def override_get_db():
        yield mock_db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_uow] = lambda: mock_uow
    app.dependency_overrides[get_optional_user] = lambda: None
    app.dependency_overrides[get_images_storage] = lambda: mock_storage
    app.dependency_overrides[get_archive_storage] = lambda: mock_archive_storage
    app.dependency_overrides[get_upload_rate_limiter] = lambda: rate_limiter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    # Clean up
    app.dependency_overrides = {}


@pytest.fixture
def as_user(client, mock_user):
    """Authenticate every request as ``mock_user``."""
    app.dependency_overrides[get_current_user] = lambda: mock_user
    app.dependency_overrides[get_optional_user] = lambda: mock_user
    yield mock_user
    app.dependency_overrides.pop(get_current_user, None)
    app.dependency_overrides.pop(get_optional_user, None)
