import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query

from twelveimg.api.deps import get_uow, verify_cron_secret
from twelveimg.common.uow import UnitOfWork
from twelveimg.domain.storage import StorageService, get_archive_storage, get_images_storage
from twelveimg.schemas.archive import CleanupResponse, CronHealthResponse, WorkerBatchResponse
from twelveimg.services.archive import ArchiveService
from twelveimg.services.job_queue import JobQueueWorker

router = APIRouter(dependencies=[Depends(verify_cron_secret)])
logger = logging.getLogger(__name__)


def get_job_queue_worker() -> JobQueueWorker:
    return JobQueueWorker()


async def run_cleanup(uow: UnitOfWork, image_storage: StorageService, archive_storage: StorageService) -> int:
    service = ArchiveService(uow, image_storage, archive_storage)
    try:
        cleaned = await service.cleanup_expired_archives()
        purged = await uow.rate_limits.purge_before(datetime.now(timezone.utc) - timedelta(days=1))
        await uow.commit()
    except Exception:
        logger.exception("[Cron] Cleanup error")
        return 0
    logger.info(f"[Cron] Cleanup completed: cleaned={cleaned} rate_limit_rows={purged}")
    return cleaned


@router.post("/cron/process-archives", response_model=WorkerBatchResponse)
async def process_archives(
    cleanup: bool = Query(False),
    worker: JobQueueWorker = Depends(get_job_queue_worker),
    uow: UnitOfWork = Depends(get_uow),
    image_storage: StorageService = Depends(get_images_storage),
    archive_storage: StorageService = Depends(get_archive_storage),
):
    result = await worker.run_worker_batch()

    cleaned = None
    if cleanup:
        cleaned = await run_cleanup(uow, image_storage, archive_storage)

    return WorkerBatchResponse(
        success=True,
        processed=result.processed,
        released=result.released,
        errors=result.errors,
        cleaned=cleaned,
        duration_ms=result.duration_ms,
    )


@router.get("/cron/process-archives", response_model=CronHealthResponse)
async def process_archives_health():
    return CronHealthResponse(timestamp=datetime.now(timezone.utc))


@router.post("/cron/cleanup-archives", response_model=CleanupResponse)
async def cleanup_archives(
    uow: UnitOfWork = Depends(get_uow),
    image_storage: StorageService = Depends(get_images_storage),
    archive_storage: StorageService = Depends(get_archive_storage),
):
    cleaned = await run_cleanup(uow, image_storage, archive_storage)
    return CleanupResponse(cleaned=cleaned)
