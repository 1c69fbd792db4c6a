import asyncio
import hashlib
import logging
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Set

from sqlalchemy.exc import IntegrityError

from twelveimg.common.uow import UnitOfWork
from twelveimg.core.config import configs
from twelveimg.core.exceptions import NotFoundError, PermanentJobFailure, TransientStorageError, ValidationError
from twelveimg.domain.storage import StorageService
from twelveimg.models.archive import GalleryArchive
from twelveimg.models.image import Image
from twelveimg.repository.archive import utcnow
from twelveimg.schemas.enum import ArchiveStatus, GalleryArchiveState

logger = logging.getLogger(__name__)

EMPTY_IMAGES_HASH = "empty"
SPOOL_MAX_BYTES = 64 * 1024 * 1024
READ_CHUNK_SIZE = 1024 * 1024


@dataclass
class EnqueueResult:
    archive_id: str
    is_new: bool
    status: ArchiveStatus


@dataclass
class ArchiveState:
    state: GalleryArchiveState
    archive: Optional[GalleryArchive] = None


@dataclass
class BuiltArchive:
    file_size_bytes: int
    checksum: str
    entries: int
    skipped: List[str]


def archive_storage_path(gallery_id, version: int) -> str:
    return f"galleries/{gallery_id}/archives/{version}.zip"


def archive_entry_name(image: Image) -> str:
    """Position prefix keeps the gallery order when the ZIP is unpacked."""
    return f"{image.position:04d}_{image.original_filename}"


def retention_cutoff(now: datetime, years: int) -> datetime:
    try:
        return now.replace(year=now.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return now.replace(year=now.year - years, day=28)


class ArchiveService:
    def __init__(self, uow: UnitOfWork, image_storage: StorageService, archive_storage: StorageService):
        self.uow = uow
        self.image_storage = image_storage
        self.archive_storage = archive_storage

    async def compute_images_hash(self, gallery_id) -> str:
        """SHA-256 over the sorted image ids; identifies the gallery's current image set."""
        image_ids = await self.uow.images.get_ids_by_gallery_id(gallery_id)
        if not image_ids:
            return EMPTY_IMAGES_HASH
        digest = hashlib.sha256(",".join(str(image_id) for image_id in image_ids).encode())
        return digest.hexdigest()

    async def enqueue_archive_job(self, gallery_id, force: bool = False, priority: int = 0) -> EnqueueResult:
        """
        Queue a ZIP build for the gallery's current image set.

        Reuses a completed archive with the same image set, or a job that is
        already pending or processing. ``force`` skips the completed-archive
        check so a failed or outdated archive can be rebuilt by hand.
        """
        logger.info(f"Enqueueing archive job for gallery {gallery_id} (force={force}, priority={priority})")
        images_hash = await self.compute_images_hash(gallery_id)

        if not force:
            existing = await self.uow.archives.find_completed_by_hash(gallery_id, images_hash)
            if existing:
                logger.info(f"Archive {existing.id} already exists for current image set of gallery {gallery_id}")
                return EnqueueResult(archive_id=str(existing.id), is_new=False, status=ArchiveStatus.COMPLETED)

        active = await self.uow.archives.get_active_for_gallery(gallery_id)
        if active:
            logger.info(f"Archive job {active.id} already {active.status} for gallery {gallery_id}")
            return EnqueueResult(archive_id=str(active.id), is_new=False, status=ArchiveStatus(active.status))

        image_count = await self.uow.images.count_by_gallery_id(gallery_id)
        if not image_count:
            raise ValidationError("Gallery has no images to archive")

        version = await self.uow.archives.next_version(gallery_id)
        archive = GalleryArchive(
            gallery_id=gallery_id,
            status=ArchiveStatus.PENDING.value,
            version=version,
            images_hash=images_hash,
            image_count=image_count,
            storage_path=archive_storage_path(gallery_id, version),
            priority=priority,
            attempts=0,
            max_attempts=configs.ARCHIVE_MAX_ATTEMPTS,
        )
        try:
            archive = await self.uow.archives.create(archive)
            await self.uow.commit()
        except IntegrityError:
            # a concurrent request queued the same gallery first
            await self.uow.rollback()
            active = await self.uow.archives.get_active_for_gallery(gallery_id)
            if active is None:
                raise
            logger.info(f"Archive job {active.id} was enqueued concurrently for gallery {gallery_id}")
            return EnqueueResult(archive_id=str(active.id), is_new=False, status=ArchiveStatus(active.status))

        logger.info(f"Archive job {archive.id} created for gallery {gallery_id} (version {version}, {image_count} images)")
        return EnqueueResult(archive_id=str(archive.id), is_new=True, status=ArchiveStatus.PENDING)

    async def get_gallery_archive_status(self, gallery_id) -> ArchiveState:
        active = await self.uow.archives.get_active_for_gallery(gallery_id)
        if active:
            return ArchiveState(state=GalleryArchiveState(active.status), archive=active)

        completed = await self.uow.archives.get_latest_for_gallery(gallery_id, status=ArchiveStatus.COMPLETED)
        if completed:
            current_hash = await self.compute_images_hash(gallery_id)
            if completed.images_hash != current_hash:
                return ArchiveState(state=GalleryArchiveState.OUTDATED, archive=completed)
            return ArchiveState(state=GalleryArchiveState.READY, archive=completed)

        latest = await self.uow.archives.get_latest_for_gallery(gallery_id)
        if latest and latest.status == ArchiveStatus.FAILED.value:
            return ArchiveState(state=GalleryArchiveState.FAILED, archive=latest)

        return ArchiveState(state=GalleryArchiveState.NONE)

    async def _fetch_image(self, image: Image) -> Optional[bytes]:
        try:
            return await self.image_storage.read_bytes(image.storage_path)
        except FileNotFoundError:
            logger.warning(f"Image {image.id} missing from storage at {image.storage_path}, skipping")
            return None
        except TransientStorageError:
            raise
        except Exception as e:
            raise TransientStorageError(f"Failed to fetch {image.storage_path}: {e}") from e

    async def build_archive(self, archive: GalleryArchive, images: Sequence[Image]) -> BuiltArchive:
        """
        Stream the gallery's images into a ZIP and upload it to the archive bucket.

        At most ``ARCHIVE_MAX_CONCURRENT_DOWNLOADS`` images are held in memory
        at once; the ZIP itself is written to a spooled temporary file.
        Images missing from storage are skipped. Any other storage failure
        aborts the build with ``TransientStorageError``.
        """
        if not images:
            raise PermanentJobFailure("Gallery has no images to archive")

        logger.info(f"Building archive {archive.id} for gallery {archive.gallery_id} ({len(images)} images)")
        semaphore = asyncio.Semaphore(configs.ARCHIVE_MAX_CONCURRENT_DOWNLOADS)
        write_lock = asyncio.Lock()
        writes: Set[asyncio.Future] = set()
        skipped: List[str] = []

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as spool:
            with zipfile.ZipFile(
                spool,
                mode="w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=configs.ARCHIVE_ZIP_COMPRESSION_LEVEL,
            ) as zf:

                async def add_image(image: Image):
                    async with semaphore:
                        data = await self._fetch_image(image)
                        if data is None:
                            skipped.append(image.original_filename)
                            return
                        async with write_lock:
                            # the thread outlives cancellation; the ZIP must not close under it
                            write = asyncio.ensure_future(asyncio.to_thread(zf.writestr, archive_entry_name(image), data))
                            writes.add(write)
                            write.add_done_callback(writes.discard)
                            await asyncio.shield(write)
                        logger.debug(f"Added {image.original_filename} to archive {archive.id}")

                tasks = [asyncio.create_task(add_image(image)) for image in images]
                try:
                    await asyncio.gather(*tasks)
                except BaseException:
                    for task in tasks:
                        task.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)
                    if writes:
                        logger.info(f"Waiting for in-flight ZIP write before abandoning archive {archive.id}")
                        await asyncio.gather(*writes, return_exceptions=True)
                    raise

            entries = len(images) - len(skipped)
            if entries == 0:
                raise PermanentJobFailure("None of the gallery's images could be read from storage")

            checksum, size = await asyncio.to_thread(self._digest, spool)
            await self.archive_storage.upload_fileobj(spool, archive.storage_path, content_type="application/zip")

        logger.info(
            f"Archive {archive.id} uploaded to {archive.storage_path}: {size} bytes, "
            f"{entries} entries, {len(skipped)} skipped"
        )
        return BuiltArchive(file_size_bytes=size, checksum=checksum, entries=entries, skipped=skipped)

    @staticmethod
    def _digest(fileobj) -> tuple:
        fileobj.seek(0)
        digest = hashlib.sha256()
        size = 0
        while chunk := fileobj.read(READ_CHUNK_SIZE):
            digest.update(chunk)
            size += len(chunk)
        fileobj.seek(0)
        return digest.hexdigest(), size

    def get_download_url(self, archive: GalleryArchive, filename: Optional[str] = None) -> str:
        if archive.status != ArchiveStatus.COMPLETED.value:
            raise NotFoundError("Archive not found or not ready")
        return self.archive_storage.generate_download_url(
            archive.storage_path,
            configs.DOWNLOAD_URL_EXPIRY_SECONDS,
            filename=filename or f"gallery-v{archive.version}.zip",
        )

    async def delete_archive(self, archive_id) -> bool:
        archive = await self.uow.archives.get_by_id(archive_id)
        if not archive:
            return False
        if archive.status == ArchiveStatus.COMPLETED.value:
            await self.archive_storage.delete_file(archive.storage_path)
        await self.uow.archives.delete_by_id(archive_id)
        await self.uow.commit()
        logger.info(f"Deleted archive {archive_id} ({archive.storage_path})")
        return True

    async def cleanup_expired_archives(self, now: Optional[datetime] = None) -> int:
        """Delete archive files and rows older than the retention window. Returns the number deleted."""
        cutoff = retention_cutoff(now or utcnow(), configs.ARCHIVE_RETENTION_YEARS)
        expired = await self.uow.archives.find_expired(cutoff)
        if not expired:
            logger.info("No expired archives to clean up")
            return 0

        deleted = 0
        for archive in expired:
            try:
                if await self.delete_archive(archive.id):
                    deleted += 1
            except Exception:
                logger.exception(f"Failed to delete expired archive {archive.id}")
                await self.uow.rollback()

        logger.info(f"Archive cleanup complete: {deleted} of {len(expired)} deleted (cutoff {cutoff.isoformat()})")
        return deleted
