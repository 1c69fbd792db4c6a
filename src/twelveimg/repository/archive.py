from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, desc, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from twelveimg.models.archive import GalleryArchive
from twelveimg.schemas.enum import ArchiveStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReleaseResult:
    released: int
    failed: int


class ArchiveRepository:
    """
    Queue operations on ``gallery_archives``.

    Status transitions are single conditional UPDATE statements keyed on the
    expected prior state, never read-then-write.
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, archive_id) -> Optional[GalleryArchive]:
        result = await self.db.execute(select(GalleryArchive).where(GalleryArchive.id == archive_id))
        return result.scalars().first()

    async def get_by_id_with_gallery(self, archive_id) -> Optional[GalleryArchive]:
        result = await self.db.execute(
            select(GalleryArchive)
            .where(GalleryArchive.id == archive_id)
            .options(selectinload(GalleryArchive.gallery))
        )
        return result.scalars().first()

    async def create(self, archive: GalleryArchive) -> GalleryArchive:
        self.db.add(archive)
        await self.db.flush()
        await self.db.refresh(archive)
        return archive

    async def next_version(self, gallery_id) -> int:
        result = await self.db.execute(
            select(func.max(GalleryArchive.version)).where(GalleryArchive.gallery_id == gallery_id)
        )
        return (result.scalar_one_or_none() or 0) + 1

    async def find_completed_by_hash(self, gallery_id, images_hash: str) -> Optional[GalleryArchive]:
        result = await self.db.execute(
            select(GalleryArchive)
            .where(
                GalleryArchive.gallery_id == gallery_id,
                GalleryArchive.images_hash == images_hash,
                GalleryArchive.status == ArchiveStatus.COMPLETED.value,
            )
            .order_by(desc(GalleryArchive.version))
        )
        return result.scalars().first()

    async def get_active_for_gallery(self, gallery_id) -> Optional[GalleryArchive]:
        result = await self.db.execute(
            select(GalleryArchive)
            .where(
                GalleryArchive.gallery_id == gallery_id,
                GalleryArchive.status.in_([ArchiveStatus.PENDING.value, ArchiveStatus.PROCESSING.value]),
            )
            .order_by(desc(GalleryArchive.created_at))
        )
        return result.scalars().first()

    async def get_latest_for_gallery(self, gallery_id, status: Optional[ArchiveStatus] = None) -> Optional[GalleryArchive]:
        query = select(GalleryArchive).where(GalleryArchive.gallery_id == gallery_id)
        if status is not None:
            query = query.where(GalleryArchive.status == status.value)
        result = await self.db.execute(query.order_by(desc(GalleryArchive.version)).limit(1))
        return result.scalars().first()

    async def lease_next_pending_job(
        self, worker_id: str, lease_seconds: int, now: Optional[datetime] = None
    ) -> Optional[GalleryArchive]:
        """
        Atomically claim the highest-priority pending job.

        SKIP LOCKED makes concurrent workers pick different rows; the outer
        status check makes the claim a no-op if the row changed underneath.
        """
        now = now or utcnow()
        candidate = (
            select(GalleryArchive.id)
            .where(
                GalleryArchive.status == ArchiveStatus.PENDING.value,
                GalleryArchive.attempts < GalleryArchive.max_attempts,
            )
            .order_by(desc(GalleryArchive.priority), GalleryArchive.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .correlate(None)
            .scalar_subquery()
        )
        stmt = (
            update(GalleryArchive)
            .where(GalleryArchive.id == candidate, GalleryArchive.status == ArchiveStatus.PENDING.value)
            .values(
                status=ArchiveStatus.PROCESSING.value,
                lease_owner=worker_id,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                started_at=now,
            )
            .returning(GalleryArchive)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def release_stale_jobs(self, now: Optional[datetime] = None) -> ReleaseResult:
        """
        Reclaim processing jobs whose lease has expired.

        A job whose next attempt would reach ``max_attempts`` becomes failed;
        every other expired job goes back to pending with ``attempts + 1``.
        """
        now = now or utcnow()
        expired = (
            GalleryArchive.status == ArchiveStatus.PROCESSING.value,
            GalleryArchive.lease_expires_at < now,
        )

        failed = await self.db.execute(
            update(GalleryArchive)
            .where(*expired, GalleryArchive.attempts + 1 >= GalleryArchive.max_attempts)
            .values(
                status=ArchiveStatus.FAILED.value,
                attempts=GalleryArchive.attempts + 1,
                lease_owner=None,
                lease_expires_at=None,
                completed_at=now,
                last_error=func.coalesce(GalleryArchive.last_error, "Lease expired"),
            )
            .returning(GalleryArchive.id)
            .execution_options(synchronize_session=False)
        )
        failed_ids = failed.scalars().all()

        released = await self.db.execute(
            update(GalleryArchive)
            .where(*expired)
            .values(
                status=ArchiveStatus.PENDING.value,
                attempts=GalleryArchive.attempts + 1,
                lease_owner=None,
                lease_expires_at=None,
            )
            .returning(GalleryArchive.id)
            .execution_options(synchronize_session=False)
        )
        released_ids = released.scalars().all()
        return ReleaseResult(released=len(released_ids), failed=len(failed_ids))

    def _leased_by(self, archive_id, worker_id: str):
        return (
            GalleryArchive.id == archive_id,
            GalleryArchive.status == ArchiveStatus.PROCESSING.value,
            GalleryArchive.lease_owner == worker_id,
        )

    async def mark_completed(
        self, archive_id, worker_id: str, file_size_bytes: int, checksum: str, now: Optional[datetime] = None
    ) -> bool:
        result = await self.db.execute(
            update(GalleryArchive)
            .where(*self._leased_by(archive_id, worker_id))
            .values(
                status=ArchiveStatus.COMPLETED.value,
                file_size_bytes=file_size_bytes,
                checksum=checksum,
                completed_at=now or utcnow(),
                lease_owner=None,
                lease_expires_at=None,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_failed(self, archive_id, worker_id: str, error: str, now: Optional[datetime] = None) -> bool:
        result = await self.db.execute(
            update(GalleryArchive)
            .where(*self._leased_by(archive_id, worker_id))
            .values(
                status=ArchiveStatus.FAILED.value,
                last_error=error,
                completed_at=now or utcnow(),
                lease_owner=None,
                lease_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_lease(self, archive_id, worker_id: str, error: str, now: Optional[datetime] = None) -> bool:
        """Give up the lease early so the next sweep reclaims the job."""
        result = await self.db.execute(
            update(GalleryArchive)
            .where(*self._leased_by(archive_id, worker_id))
            .values(lease_expires_at=now or utcnow(), last_error=error)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_expired(self, cutoff: datetime) -> Sequence[GalleryArchive]:
        result = await self.db.execute(select(GalleryArchive).where(GalleryArchive.created_at < cutoff))
        return result.scalars().all()

    async def delete_by_id(self, archive_id) -> int:
        result = await self.db.execute(delete(GalleryArchive).where(GalleryArchive.id == archive_id))
        return result.rowcount
