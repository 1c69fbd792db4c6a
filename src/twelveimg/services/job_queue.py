import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from twelveimg.common.uow import new_uow
from twelveimg.core.config import configs
from twelveimg.core.exceptions import JobExpiredLeaseError, PermanentJobFailure
from twelveimg.domain.storage import StorageService, get_archive_storage, get_images_storage
from twelveimg.models.archive import GalleryArchive
from twelveimg.services.archive import ArchiveService

logger = logging.getLogger(__name__)

WORKER_ID = f"worker-{configs.WORKER_REGION}-{uuid.uuid4().hex[:8]}"


@dataclass
class WorkerRunResult:
    processed: bool
    released: int = 0
    failed: int = 0
    archive_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchRunResult:
    processed: int = 0
    released: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0


class JobQueueWorker:
    """
    Leases archive jobs one at a time and builds their ZIPs.

    Instances hold no state between calls; every database step runs in its
    own short transaction so a crash mid-build leaves only an expiring lease.
    """

    def __init__(
        self,
        uow_factory=new_uow,
        image_storage: Optional[StorageService] = None,
        archive_storage: Optional[StorageService] = None,
        worker_id: str = WORKER_ID,
        lease_seconds: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.uow_factory = uow_factory
        self.image_storage = image_storage or get_images_storage()
        self.archive_storage = archive_storage or get_archive_storage()
        self.worker_id = worker_id
        self.lease_seconds = lease_seconds or configs.ARCHIVE_LEASE_SECONDS
        self.timeout_seconds = timeout_seconds or configs.ARCHIVE_JOB_TIMEOUT_SECONDS

    async def release_stale_jobs(self):
        async with self.uow_factory() as uow:
            async with uow:
                result = await uow.archives.release_stale_jobs()
        if result.released or result.failed:
            logger.info(f"Reclaimed stale archive jobs: released={result.released} failed={result.failed}")
        return result

    async def lease_next_job(self) -> Optional[GalleryArchive]:
        async with self.uow_factory() as uow:
            async with uow:
                job = await uow.archives.lease_next_pending_job(self.worker_id, self.lease_seconds)
        if job:
            logger.info(f"Worker {self.worker_id} leased archive job {job.id} (gallery {job.gallery_id}, attempts {job.attempts})")
        return job

    async def process_job(self, job: GalleryArchive) -> None:
        async with self.uow_factory() as uow:
            async with uow:
                images = list(await uow.images.get_by_gallery_id(job.gallery_id))

            # no transaction is held open while the ZIP is built
            service = ArchiveService(uow, self.image_storage, self.archive_storage)
            built = await service.build_archive(job, images)

            async with uow:
                completed = await uow.archives.mark_completed(
                    job.id, self.worker_id, file_size_bytes=built.file_size_bytes, checksum=built.checksum
                )
        if not completed:
            raise JobExpiredLeaseError(f"Lease on archive job {job.id} was lost before completion")
        logger.info(f"Archive job {job.id} completed ({built.file_size_bytes} bytes, {built.entries} images)")

    async def _mark_failed(self, job: GalleryArchive, error: str) -> None:
        async with self.uow_factory() as uow:
            async with uow:
                if not await uow.archives.mark_failed(job.id, self.worker_id, error):
                    logger.warning(f"Could not mark archive job {job.id} failed: lease no longer held")

    async def _expire_lease(self, job: GalleryArchive, error: str) -> None:
        async with self.uow_factory() as uow:
            async with uow:
                await uow.archives.expire_lease(job.id, self.worker_id, error)

    async def run_worker_once(self) -> WorkerRunResult:
        """
        Reclaim stale leases, then lease and process at most one job.

        A transient failure or timeout leaves the job ``processing`` with an
        expired lease so the next sweep returns it to ``pending``. A permanent
        failure marks it ``failed`` right away.
        """
        released = await self.release_stale_jobs()

        job = await self.lease_next_job()
        if not job:
            return WorkerRunResult(processed=False, released=released.released, failed=released.failed)

        archive_id = str(job.id)
        try:
            await asyncio.wait_for(self.process_job(job), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error = f"Archive job {archive_id} timed out after {self.timeout_seconds}s"
            logger.error(error)
            return WorkerRunResult(False, released.released, released.failed, archive_id, error)
        except PermanentJobFailure as e:
            logger.error(f"Archive job {archive_id} failed permanently: {e}")
            await self._mark_failed(job, str(e))
            return WorkerRunResult(False, released.released, released.failed, archive_id, str(e))
        except JobExpiredLeaseError as e:
            logger.warning(str(e))
            return WorkerRunResult(False, released.released, released.failed, archive_id, str(e))
        except Exception as e:
            error = getattr(e, "internal_detail", None) or str(e) or type(e).__name__
            logger.exception(f"Archive job {archive_id} failed, leaving it for retry")
            await self._expire_lease(job, error)
            return WorkerRunResult(False, released.released, released.failed, archive_id, error)

        return WorkerRunResult(True, released.released, released.failed, archive_id)

    async def run_worker_batch(self, max_iterations: Optional[int] = None) -> BatchRunResult:
        """
        Call ``run_worker_once`` up to ``max_iterations`` times.

        Stops once the queue has nothing to lease. A failed job or an exception
        from one iteration is recorded and the loop moves on to the next.
        """
        max_iterations = max_iterations or configs.CRON_MAX_ITERATIONS
        start = time.monotonic()
        result = BatchRunResult()

        for iteration in range(max_iterations):
            try:
                run = await self.run_worker_once()
            except Exception as e:
                logger.exception(f"Worker iteration {iteration} raised")
                result.errors.append(str(e) or type(e).__name__)
                continue

            result.released += run.released
            if run.error:
                result.errors.append(run.error)
            if run.processed:
                result.processed += 1
            elif run.archive_id is None:
                break

        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Worker batch done: processed={result.processed} released={result.released} "
            f"errors={len(result.errors)} duration_ms={result.duration_ms}"
        )
        return result

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """Poll continuously, for deployments that run the worker as a long-lived process."""
        interval = interval_seconds or configs.WORKER_POLL_INTERVAL_SECONDS
        logger.info(f"Starting worker loop {self.worker_id} (interval {interval}s)")
        while True:
            try:
                run = await self.run_worker_once()
                if run.processed or run.released:
                    logger.info(f"Worker cycle: processed={run.processed} released={run.released}")
                if run.processed:
                    continue
            except Exception:
                logger.exception("Worker loop iteration failed")
            await asyncio.sleep(interval)
