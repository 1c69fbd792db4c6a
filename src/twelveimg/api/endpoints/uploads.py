import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status

from twelveimg.api.deps import get_current_user, get_uow, limit_upload_grants
from twelveimg.common.uow import UnitOfWork
from twelveimg.domain.storage import StorageService, get_images_storage
from twelveimg.models.user import User
from twelveimg.schemas.upload import ConfirmUploadsRequest, ConfirmUploadsResponse, UploadGrant, UploadGrantRequest
from twelveimg.services.upload import UploadService

router = APIRouter()
logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
}


@router.post(
    "/uploads/grants",
    response_model=List[UploadGrant],
    dependencies=[Depends(limit_upload_grants)],
)
async def request_upload_grants(
    payload: UploadGrantRequest,
    user: User = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    storage: StorageService = Depends(get_images_storage),
):
    service = UploadService(uow, storage)
    return await service.request_upload_grants(user, payload.gallery_id, payload.files)


@router.post("/uploads/confirm", response_model=ConfirmUploadsResponse)
async def confirm_uploads(
    payload: ConfirmUploadsRequest,
    user: User = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    storage: StorageService = Depends(get_images_storage),
):
    service = UploadService(uow, storage)
    return await service.confirm_uploads(user, payload.gallery_id, payload.uploads)


@router.api_route("/uploads/warm", methods=["GET", "HEAD"], status_code=status.HTTP_204_NO_CONTENT)
async def warm_connection():
    """No-op that lets upload clients open their connections before the burst."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=NO_CACHE_HEADERS)
