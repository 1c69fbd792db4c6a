import asyncio
import logging
import math
import time
import uuid
from typing import List, Optional, Sequence

from twelveimg.common.uow import UnitOfWork, new_uow
from twelveimg.core.config import configs
from twelveimg.core.exceptions import (
    InvalidFileError,
    QuotaExceededError,
    TransientStorageError,
    ValidationError,
)
from twelveimg.core.plans import GB, get_image_limit, get_storage_limit_bytes, normalize_plan_id
from twelveimg.core.security import generate_upload_token, verify_upload_token
from twelveimg.domain.storage import StorageService
from twelveimg.models.user import User
from twelveimg.schemas.upload import (
    ConfirmFailure,
    ConfirmUploadItem,
    ConfirmUploadsResponse,
    UploadFileMetadata,
    UploadGrant,
)
from twelveimg.services.gallery import get_owned_gallery

logger = logging.getLogger(__name__)

MIME_TO_EXT = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def _format_gb(value: float) -> str:
    return f"{value / GB:.1f}"


def _format_limit_gb(value: float) -> str:
    limit = value / GB
    return f"{limit:g}"


class UploadService:
    """
    Server side of the upload pipeline: grant issuance and confirmation.

    Grants are all-or-nothing. Confirmations are independent per file, each in
    its own transaction.
    """

    def __init__(self, uow: UnitOfWork, storage: StorageService, uow_factory=new_uow):
        self.uow = uow
        self.storage = storage
        self.uow_factory = uow_factory

    def validate_files(self, files: Sequence[UploadFileMetadata]) -> None:
        if len(files) > configs.MAX_FILES_PER_UPLOAD:
            raise ValidationError(f"Too many files: at most {configs.MAX_FILES_PER_UPLOAD} per request")

        allowed = configs.allowed_mime_types
        for file in files:
            if file.file_size_bytes > configs.MAX_FILE_SIZE:
                raise InvalidFileError(f"File too large: {file.original_filename}", filename=file.original_filename)
            if file.mime_type not in allowed or file.mime_type not in MIME_TO_EXT:
                raise InvalidFileError(f"Invalid file type: {file.mime_type}", filename=file.original_filename)

    async def check_quota(self, user: User, batch_bytes: int, batch_count: int) -> None:
        plan = normalize_plan_id(user.plan)
        usage = await self.uow.images.get_usage_for_user(user.id)

        storage_limit = get_storage_limit_bytes(plan)
        if not math.isinf(storage_limit) and usage.total_bytes + batch_bytes > storage_limit:
            logger.info(
                f"Storage quota hit for user {user.id}: used={usage.total_bytes} batch={batch_bytes} limit={storage_limit}"
            )
            raise QuotaExceededError(
                f"Storage limit exceeded. You've used {_format_gb(usage.total_bytes)}GB of "
                f"{_format_limit_gb(storage_limit)}GB. Please upgrade your plan."
            )

        image_limit = get_image_limit(plan)
        if not math.isinf(image_limit) and usage.image_count + batch_count > image_limit:
            logger.info(
                f"Image quota hit for user {user.id}: count={usage.image_count} batch={batch_count} limit={image_limit}"
            )
            raise QuotaExceededError(
                f"Image limit exceeded. You have {usage.image_count} of {int(image_limit)} images. "
                "Please upgrade your plan."
            )

    async def _issue_grant(self, gallery_id, file: UploadFileMetadata, expires_in: int) -> UploadGrant:
        ext = MIME_TO_EXT[file.mime_type]
        storage_path = f"{gallery_id}/{uuid.uuid4()}.{ext}"
        expires_at = int(time.time()) + expires_in
        try:
            signed_url = await asyncio.to_thread(
                self.storage.generate_upload_url, storage_path, file.mime_type, expires_in
            )
        except TransientStorageError:
            raise
        except Exception as e:
            logger.exception(f"Failed to sign upload URL for {storage_path}")
            raise TransientStorageError(f"Signing failed for {storage_path}: {e}") from e

        return UploadGrant(
            local_id=file.local_id,
            storage_path=storage_path,
            signed_url=signed_url,
            token=generate_upload_token(storage_path, expires_at),
            expires_at=expires_at,
        )

    async def request_upload_grants(
        self, user: User, gallery_id, files: Sequence[UploadFileMetadata]
    ) -> List[UploadGrant]:
        """
        Validate a whole batch and issue one signed upload grant per file.

        Raises before any grant is issued if the caller does not own the
        gallery, any file is invalid or the batch would exceed the plan.
        """
        logger.info(f"Upload grant request: user={user.id} gallery={gallery_id} files={len(files)}")
        await get_owned_gallery(self.uow, gallery_id, user)

        self.validate_files(files)

        batch_bytes = sum(f.file_size_bytes for f in files)
        await self.check_quota(user, batch_bytes, len(files))

        expires_in = configs.UPLOAD_URL_EXPIRY_SECONDS
        grants = await asyncio.gather(*(self._issue_grant(gallery_id, f, expires_in) for f in files))

        logger.info(f"Issued {len(grants)} upload grants for gallery {gallery_id} ({batch_bytes} bytes)")
        return list(grants)

    def _check_upload_token(self, gallery_id, upload: ConfirmUploadItem) -> Optional[str]:
        if not upload.storage_path.startswith(f"{gallery_id}/"):
            return "Storage path does not belong to this gallery"
        if not verify_upload_token(upload.storage_path, upload.token):
            return "Invalid upload token"
        if upload.mime_type not in MIME_TO_EXT:
            return f"Invalid file type: {upload.mime_type}"
        return None

    async def _confirm_one(self, gallery_id, upload: ConfirmUploadItem, semaphore: asyncio.Semaphore):
        async with semaphore, self.uow_factory() as uow:
            async with uow:
                image_id, created = await uow.images.insert_image_at_position(
                    gallery_id=gallery_id,
                    storage_path=upload.storage_path,
                    original_filename=upload.original_filename,
                    file_size_bytes=upload.file_size,
                    mime_type=upload.mime_type,
                    width=upload.width,
                    height=upload.height,
                )
        if created:
            logger.debug(f"Confirmed {upload.storage_path} as image {image_id}")
        else:
            logger.info(f"Upload {upload.storage_path} already confirmed as image {image_id}")
        return image_id

    async def confirm_uploads(
        self, user: User, gallery_id, uploads: Sequence[ConfirmUploadItem]
    ) -> ConfirmUploadsResponse:
        """
        Create image rows for uploaded files.

        Each upload is inserted in its own transaction, all in parallel. A
        failure is reported for that file only. Confirming a path twice
        returns the existing image id.
        """
        logger.info(f"Confirm request: user={user.id} gallery={gallery_id} uploads={len(uploads)}")
        gallery = await get_owned_gallery(self.uow, gallery_id, user)
        had_cover = gallery.cover_image_id is not None

        failures: List[ConfirmFailure] = []
        pending = []
        for upload in uploads:
            error = self._check_upload_token(gallery_id, upload)
            if error:
                logger.warning(f"Rejected confirmation for {upload.storage_path}: {error}")
                failures.append(ConfirmFailure(storage_path=upload.storage_path, error=error))
            else:
                pending.append(upload)

        # each insert holds a connection while it waits for the gallery lock
        semaphore = asyncio.Semaphore(configs.CONFIRM_MAX_CONCURRENCY)
        results = await asyncio.gather(
            *(self._confirm_one(gallery_id, upload, semaphore) for upload in pending),
            return_exceptions=True,
        )

        image_ids = []
        for upload, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to save image {upload.storage_path}: {result!r}")
                failures.append(ConfirmFailure(storage_path=upload.storage_path, error="Failed to save image"))
            else:
                image_ids.append(result)

        if image_ids and not had_cover:
            if await self.uow.galleries.set_cover_if_missing(gallery_id, image_ids[0]):
                logger.info(f"Set cover image {image_ids[0]} for gallery {gallery_id}")
            await self.uow.commit()

        logger.info(f"Confirmed {len(image_ids)} images for gallery {gallery_id}, {len(failures)} failed")
        return ConfirmUploadsResponse(image_ids=[str(image_id) for image_id in image_ids], failed=failures)

    async def get_existing_filenames(self, user: User, gallery_id) -> List[str]:
        await get_owned_gallery(self.uow, gallery_id, user)
        filenames = await self.uow.images.get_filenames_by_gallery_id(gallery_id)
        logger.debug(f"Gallery {gallery_id} has {len(filenames)} existing filenames")
        return filenames
