import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession

from twelveimg.repository.image import ImageRepository
from twelveimg.repository.rate_limit import RateLimitRepository
from twelveimg.repository.user import UserRepository


@pytest.fixture
def mock_db_session():
    session = AsyncMock(spec=AsyncSession)
    return session


def compiled(mock_db_session, call_index) -> str:
    stmt = mock_db_session.execute.call_args_list[call_index].args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


def scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    return result


@pytest.mark.asyncio
async def test_insert_image_at_position_appends(mock_db_session):
    repo = ImageRepository(mock_db_session)
    image_id = uuid.uuid4()
    mock_db_session.execute.side_effect = [MagicMock(), scalar_result(image_id)]

    result = await repo.insert_image_at_position(
        gallery_id=uuid.uuid4(),
        storage_path="g/a.jpg",
        original_filename="a.jpg",
        file_size_bytes=10,
        mime_type="image/jpeg",
    )

    assert result == (image_id, True)
    assert "FOR UPDATE" in compiled(mock_db_session, 0)
    insert_sql = compiled(mock_db_session, 1)
    assert "ON CONFLICT (storage_path) DO NOTHING" in insert_sql
    assert "max(images.position)" in insert_sql


@pytest.mark.asyncio
async def test_insert_image_at_position_existing_path(mock_db_session):
    repo = ImageRepository(mock_db_session)
    existing_id = uuid.uuid4()
    mock_db_session.execute.side_effect = [MagicMock(), scalar_result(None), scalar_result(existing_id)]

    result = await repo.insert_image_at_position(
        gallery_id=uuid.uuid4(),
        storage_path="g/a.jpg",
        original_filename="a.jpg",
        file_size_bytes=10,
        mime_type="image/jpeg",
    )

    assert result == (existing_id, False)
    assert mock_db_session.execute.call_count == 3


@pytest.mark.asyncio
async def test_get_usage_for_user(mock_db_session):
    repo = ImageRepository(mock_db_session)
    mock_result = MagicMock()
    mock_result.one.return_value = (1234, 5)
    mock_db_session.execute.return_value = mock_result

    usage = await repo.get_usage_for_user(uuid.uuid4())

    assert usage.total_bytes == 1234
    assert usage.image_count == 5


@pytest.mark.asyncio
async def test_user_get_or_create(mock_db_session):
    repo = UserRepository(mock_db_session)
    user = MagicMock()
    mock_db_session.execute.side_effect = [MagicMock(), scalar_result(user)]

    assert await repo.get_or_create("user|1", email="a@b.c") is user
    assert "ON CONFLICT (auth_subject) DO NOTHING" in compiled(mock_db_session, 0)


@pytest.mark.asyncio
async def test_rate_limit_increment(mock_db_session):
    repo = RateLimitRepository(mock_db_session)
    mock_db_session.execute.return_value = scalar_result(3)

    from datetime import datetime, timezone

    assert await repo.increment("k", datetime(2026, 1, 1, tzinfo=timezone.utc)) == 3
    assert "ON CONFLICT (key, window_start) DO UPDATE" in compiled(mock_db_session, 0)
