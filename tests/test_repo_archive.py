import re
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.schema import CreateIndex

from twelveimg.models.archive import GalleryArchive
from twelveimg.repository.archive import ArchiveRepository


@pytest.fixture
def mock_db_session():
    session = AsyncMock(spec=AsyncSession)
    return session


def compiled_stmt(mock_db_session, call_index=0):
    stmt = mock_db_session.execute.call_args_list[call_index].args[0]
    return stmt.compile(dialect=postgresql.dialect())


def compiled(mock_db_session, call_index=0) -> str:
    return str(compiled_stmt(mock_db_session, call_index))


def bound(stmt, pattern, text=None):
    """Value bound to the parameter captured by ``pattern`` in ``text`` (default: the whole statement)."""
    text = str(stmt) if text is None else text
    match = re.search(pattern, text)
    assert match, f"{pattern!r} not found in {text}"
    return stmt.params[match.group(1)]


def ids_result(ids):
    result = MagicMock()
    result.scalars.return_value.all.return_value = ids
    return result


@pytest.mark.asyncio
async def test_lease_next_pending_job_is_single_conditional_update(mock_db_session):
    repo = ArchiveRepository(mock_db_session)
    job = GalleryArchive(id=uuid.uuid4(), status="processing", lease_owner="worker-a")

    mock_result = MagicMock()
    mock_result.scalars.return_value.first.return_value = job
    mock_db_session.execute.return_value = mock_result

    leased = await repo.lease_next_pending_job("worker-a", lease_seconds=60)

    assert leased is job
    mock_db_session.execute.assert_called_once()
    stmt = compiled_stmt(mock_db_session)
    sql = str(stmt)
    assert sql.startswith("UPDATE gallery_archives")
    assert "RETURNING" in sql

    candidate, _, outer = sql.partition("FOR UPDATE SKIP LOCKED)")
    assert outer
    assert "WHERE gallery_archives.id = (SELECT gallery_archives.id" in candidate
    assert bound(stmt, r"gallery_archives\.status = %\((\w+)\)s", candidate) == "pending"
    assert "gallery_archives.attempts < gallery_archives.max_attempts" in candidate
    # the claim re-checks the status outside the locked subquery
    assert bound(stmt, r"^\s*AND gallery_archives\.status = %\((\w+)\)s", outer) == "pending"
    assert stmt.params["status"] == "processing"
    assert stmt.params["lease_owner"] == "worker-a"


@pytest.mark.asyncio
async def test_lease_next_pending_job_none_available(mock_db_session):
    repo = ArchiveRepository(mock_db_session)

    mock_result = MagicMock()
    mock_result.scalars.return_value.first.return_value = None
    mock_db_session.execute.return_value = mock_result

    assert await repo.lease_next_pending_job("worker-a", lease_seconds=60) is None


@pytest.mark.asyncio
async def test_release_stale_jobs_fails_exhausted_then_releases_rest(mock_db_session):
    repo = ArchiveRepository(mock_db_session)
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    mock_db_session.execute.side_effect = [
        ids_result([uuid.uuid4()]),
        ids_result([uuid.uuid4(), uuid.uuid4()]),
    ]

    result = await repo.release_stale_jobs(now=now)

    assert result.failed == 1
    assert result.released == 2

    fail_stmt = compiled_stmt(mock_db_session, 0)
    fail_set, _, fail_where = str(fail_stmt).partition(" WHERE ")
    assert bound(fail_stmt, r"\(?gallery_archives\.attempts \+ %\((\w+)\)s\)? >= gallery_archives\.max_attempts", fail_where) == 1
    assert bound(fail_stmt, r"gallery_archives\.lease_expires_at < %\((\w+)\)s", fail_where) == now
    assert bound(fail_stmt, r"gallery_archives\.status = %\((\w+)\)s", fail_where) == "processing"
    assert bound(fail_stmt, r"attempts=\(?gallery_archives\.attempts \+ %\((\w+)\)s", fail_set) == 1
    assert fail_stmt.params["status"] == "failed"

    release_stmt = compiled_stmt(mock_db_session, 1)
    release_set, _, release_where = str(release_stmt).partition(" WHERE ")
    assert "max_attempts" not in release_where
    assert bound(release_stmt, r"gallery_archives\.lease_expires_at < %\((\w+)\)s", release_where) == now
    assert bound(release_stmt, r"gallery_archives\.status = %\((\w+)\)s", release_where) == "processing"
    assert bound(release_stmt, r"attempts=\(?gallery_archives\.attempts \+ %\((\w+)\)s", release_set) == 1
    assert release_stmt.params["status"] == "pending"
    assert release_stmt.params["lease_owner"] is None


@pytest.mark.asyncio
async def test_mark_completed_requires_lease(mock_db_session):
    repo = ArchiveRepository(mock_db_session)
    mock_result = MagicMock()
    mock_result.rowcount = 0
    mock_db_session.execute.return_value = mock_result

    completed = await repo.mark_completed(uuid.uuid4(), "worker-a", file_size_bytes=10, checksum="abc")

    assert completed is False
    sql = compiled(mock_db_session)
    assert "gallery_archives.lease_owner = " in sql
    assert "gallery_archives.status = " in sql


@pytest.mark.asyncio
async def test_mark_failed(mock_db_session):
    repo = ArchiveRepository(mock_db_session)
    mock_result = MagicMock()
    mock_result.rowcount = 1
    mock_db_session.execute.return_value = mock_result

    assert await repo.mark_failed(uuid.uuid4(), "worker-a", "boom") is True


@pytest.mark.asyncio
async def test_next_version(mock_db_session):
    repo = ArchiveRepository(mock_db_session)
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = None
    mock_db_session.execute.return_value = mock_result

    assert await repo.next_version(uuid.uuid4()) == 1


@pytest.mark.asyncio
async def test_create(mock_db_session):
    repo = ArchiveRepository(mock_db_session)
    archive = GalleryArchive(id=uuid.uuid4())

    await repo.create(archive)

    mock_db_session.add.assert_called_once_with(archive)
    mock_db_session.flush.assert_called_once()
    mock_db_session.refresh.assert_called_once_with(archive)


def test_only_one_active_job_per_gallery():
    indexes = {index.name: index for index in GalleryArchive.__table__.indexes}
    active = indexes["uq_gallery_archives_active"]

    ddl = str(CreateIndex(active).compile(dialect=postgresql.dialect()))

    assert ddl.startswith("CREATE UNIQUE INDEX uq_gallery_archives_active ON gallery_archives (gallery_id)")
    assert "WHERE status IN ('pending', 'processing')" in ddl
    constraints = {c.name for c in GalleryArchive.__table__.constraints}
    assert "uq_gallery_archives_gallery_version" in constraints
