import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, Response, status
from fastapi.responses import FileResponse

from twelveimg.core.config import configs
from twelveimg.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from twelveimg.core.security import verify_storage_signature
from twelveimg.domain.storage import get_storage_client
from twelveimg.domain.storage.local import LocalStorageService

router = APIRouter()
logger = logging.getLogger(__name__)


def _local_bucket(bucket: str) -> LocalStorageService:
    if configs.STORAGE_TYPE != "local" or bucket not in (configs.IMAGES_BUCKET, configs.ARCHIVE_BUCKET):
        raise NotFoundError("Bucket not found")
    return get_storage_client(bucket)


def _resolve(storage: LocalStorageService, path: str):
    try:
        return storage.resolve(path)
    except ValueError:
        raise NotFoundError("Object not found")


def _check_signature(bucket: str, path: str, method: str, expires: int, signature: str) -> None:
    if not verify_storage_signature(bucket, path, method, expires, signature):
        logger.warning(f"Rejected {method} on {bucket}/{path}: bad or expired signature")
        raise ForbiddenError("Invalid or expired signature")


@router.put("/storage/{bucket}/{path:path}")
async def put_object(
    bucket: str,
    path: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
):
    """Target of local-storage signed upload URLs. Each signed path can be written once."""
    storage = _local_bucket(bucket)
    _check_signature(bucket, path, "PUT", expires, signature)
    _resolve(storage, path)

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > configs.MAX_FILE_SIZE:
        raise ValidationError(f"File too large: {path}")
    if await storage.exists(path):
        logger.warning(f"Rejected PUT on {bucket}/{path}: object already uploaded")
        raise ForbiddenError("Upload grant already used")

    try:
        await storage.write_stream(path, request.stream(), max_bytes=configs.MAX_FILE_SIZE)
    except FileExistsError:
        logger.warning(f"Rejected PUT on {bucket}/{path}: object already uploaded")
        raise ForbiddenError("Upload grant already used")
    return Response(status_code=status.HTTP_200_OK)


@router.get("/storage/{bucket}/{path:path}")
async def get_object(
    bucket: str,
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    filename: Optional[str] = Query(None),
):
    """Target of local-storage signed download URLs."""
    storage = _local_bucket(bucket)
    _check_signature(bucket, path, "GET", expires, signature)

    full_path = _resolve(storage, path)
    if not full_path.is_file():
        raise NotFoundError("Object not found")
    return FileResponse(full_path, filename=filename)
