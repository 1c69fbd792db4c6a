import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import RedirectResponse

from twelveimg.api.deps import get_optional_user, get_uow
from twelveimg.common.uow import UnitOfWork
from twelveimg.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from twelveimg.core.security import verify_download_token
from twelveimg.domain.storage import StorageService, get_archive_storage, get_images_storage
from twelveimg.models.user import User
from twelveimg.schemas.enum import ArchiveStatus
from twelveimg.services.archive import ArchiveService

router = APIRouter()
logger = logging.getLogger(__name__)


def _parse_archive_id(archive_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(archive_id)
    except ValueError:
        return None


@router.get("/download/{archive_id}")
async def download_archive(
    archive_id: str,
    token: Optional[str] = Query(None),
    user: Optional[User] = Depends(get_optional_user),
    uow: UnitOfWork = Depends(get_uow),
    image_storage: StorageService = Depends(get_images_storage),
    archive_storage: StorageService = Depends(get_archive_storage),
):
    """
    Redirect to a short-lived signed URL for a completed archive.

    Authorized by a signed download token (email links) or by the session of
    the gallery's owner.
    """
    parsed_id = _parse_archive_id(archive_id)
    archive = await uow.archives.get_by_id_with_gallery(parsed_id) if parsed_id else None
    if not archive or archive.status != ArchiveStatus.COMPLETED.value:
        raise NotFoundError("Archive not found or not ready")

    gallery = archive.gallery
    if not gallery.download_enabled:
        raise ForbiddenError("Downloads are disabled for this gallery")

    method = None
    if token and verify_download_token(str(archive.id), token):
        method = "token"
    elif user is not None and user.id == gallery.user_id:
        method = "session"

    if method is None:
        raise UnauthorizedError("Unauthorized")

    service = ArchiveService(uow, image_storage, archive_storage)
    download_url = service.get_download_url(archive, filename=f"{gallery.title}.zip")

    logger.info(f"[Download] Archive {archive.id} of gallery {gallery.id} downloaded via {method}")
    return RedirectResponse(download_url, status_code=status.HTTP_302_FOUND)


@router.head("/download/{archive_id}")
async def archive_readiness(archive_id: str, uow: UnitOfWork = Depends(get_uow)):
    """200 when the archive is ready, 202 while it is still being built, 404 otherwise."""
    parsed_id = _parse_archive_id(archive_id)
    archive = await uow.archives.get_by_id(parsed_id) if parsed_id else None
    if not archive:
        return Response(status_code=status.HTTP_404_NOT_FOUND)

    if archive.status != ArchiveStatus.COMPLETED.value:
        return Response(
            status_code=status.HTTP_202_ACCEPTED,
            headers={"X-Archive-Status": archive.status},
        )

    return Response(
        status_code=status.HTTP_200_OK,
        headers={
            "Content-Length": str(archive.file_size_bytes or 0),
            "Content-Type": "application/zip",
        },
    )
