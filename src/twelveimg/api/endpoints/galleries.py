import logging
import uuid

from fastapi import APIRouter, Depends, Query

from twelveimg.api.deps import get_current_user, get_uow
from twelveimg.common.uow import UnitOfWork
from twelveimg.core.config import configs
from twelveimg.core.security import generate_download_token
from twelveimg.domain.storage import StorageService, get_archive_storage, get_images_storage
from twelveimg.models.user import User
from twelveimg.schemas.archive import ArchiveResponse, ArchiveStatusResponse, EnqueueArchiveResponse
from twelveimg.schemas.enum import GalleryArchiveState
from twelveimg.schemas.upload import ExistingFilenamesResponse
from twelveimg.services.archive import ArchiveService
from twelveimg.services.gallery import get_owned_gallery
from twelveimg.services.upload import UploadService

router = APIRouter()
logger = logging.getLogger(__name__)

STATE_MESSAGES = {
    GalleryArchiveState.NONE: "No archive has been created for this gallery yet.",
    GalleryArchiveState.PENDING: "Archive is queued and will be created shortly.",
    GalleryArchiveState.PROCESSING: "Archive is being created.",
    GalleryArchiveState.OUTDATED: "Archive is outdated. Request a new archive to include recent changes.",
    GalleryArchiveState.FAILED: "Archive unavailable. Please try again later.",
}


def archive_download_link(archive_id) -> str:
    token = generate_download_token(str(archive_id))
    return f"{configs.PUBLIC_BASE_URL.rstrip('/')}/api/download/{archive_id}?token={token}"


@router.get("/galleries/{gallery_id}/filenames", response_model=ExistingFilenamesResponse)
async def get_existing_filenames(
    gallery_id: uuid.UUID,
    user: User = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    storage: StorageService = Depends(get_images_storage),
):
    service = UploadService(uow, storage)
    filenames = await service.get_existing_filenames(user, gallery_id)
    return ExistingFilenamesResponse(gallery_id=gallery_id, filenames=filenames)


@router.post("/galleries/{gallery_id}/archive", response_model=EnqueueArchiveResponse)
async def enqueue_archive(
    gallery_id: uuid.UUID,
    force: bool = Query(False),
    user: User = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    image_storage: StorageService = Depends(get_images_storage),
    archive_storage: StorageService = Depends(get_archive_storage),
):
    await get_owned_gallery(uow, gallery_id, user)
    service = ArchiveService(uow, image_storage, archive_storage)
    result = await service.enqueue_archive_job(gallery_id, force=force)
    return EnqueueArchiveResponse(archive_id=result.archive_id, is_new=result.is_new, status=result.status)


@router.get("/galleries/{gallery_id}/archive", response_model=ArchiveStatusResponse)
async def get_archive_status(
    gallery_id: uuid.UUID,
    user: User = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    image_storage: StorageService = Depends(get_images_storage),
    archive_storage: StorageService = Depends(get_archive_storage),
):
    gallery = await get_owned_gallery(uow, gallery_id, user)
    service = ArchiveService(uow, image_storage, archive_storage)
    status = await service.get_gallery_archive_status(gallery_id)

    download_url = None
    ready = status.state in (GalleryArchiveState.READY, GalleryArchiveState.OUTDATED)
    if ready and gallery.download_enabled:
        download_url = archive_download_link(status.archive.id)

    return ArchiveStatusResponse(
        state=status.state,
        archive=ArchiveResponse.model_validate(status.archive) if status.archive else None,
        download_url=download_url,
        message=STATE_MESSAGES.get(status.state),
    )
