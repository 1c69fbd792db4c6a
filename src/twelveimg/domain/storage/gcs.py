import asyncio
import logging
from datetime import timedelta
from typing import BinaryIO, Optional

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage  # sync client, wrapped with asyncio.to_thread

from twelveimg.core.config import configs
from twelveimg.core.exceptions import TransientStorageError

from .base import StorageService

logger = logging.getLogger(__name__)


class GCSStorageService(StorageService):
    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        self.client = client or storage.Client(project=configs.GCS_PROJECT)
        self.bucket_name = bucket_name
        self.bucket = self.client.bucket(self.bucket_name)

        logger.info(f"GCSStorageService initialized for bucket '{self.bucket_name}'")

    async def _run(self, fn, path: str):
        try:
            return await asyncio.to_thread(fn)
        except gcs_exceptions.NotFound as e:
            raise FileNotFoundError(f"gs://{self.bucket_name}/{path}") from e
        except gcs_exceptions.GoogleAPICallError as e:
            logger.warning(f"[GCS] Call failed for gs://{self.bucket_name}/{path}: {e}")
            raise TransientStorageError(f"GCS call failed for {path}: {e}") from e

    async def read_bytes(self, path: str) -> bytes:
        blob = self.bucket.blob(path)
        return await self._run(blob.download_as_bytes, path)

    async def upload_fileobj(self, fileobj: BinaryIO, path: str, content_type: Optional[str] = None) -> int:
        blob = self.bucket.blob(path)

        def upload_sync():
            fileobj.seek(0, 2)
            size = fileobj.tell()
            fileobj.seek(0)
            blob.upload_from_file(fileobj, size=size, content_type=content_type, rewind=True)
            logger.info(f"[GCS] Uploaded {size} bytes to {path}")
            return size

        return await self._run(upload_sync, path)

    async def exists(self, path: str) -> bool:
        blob = self.bucket.blob(path)
        return await self._run(blob.exists, path)

    async def delete_file(self, path: str) -> bool:
        blob = self.bucket.blob(path)

        def delete_sync():
            try:
                blob.delete()
            except gcs_exceptions.NotFound:
                return False
            logger.info(f"[GCS] Deleted {path}")
            return True

        return await self._run(delete_sync, path)

    def generate_upload_url(self, path: str, content_type: Optional[str], expires_in: int) -> str:
        blob = self.bucket.blob(path)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=expires_in),
            method="PUT",
            content_type=content_type,
        )

    def generate_download_url(self, path: str, expires_in: int, filename: Optional[str] = None) -> str:
        blob = self.bucket.blob(path)
        disposition = f'attachment; filename="{filename}"' if filename else None
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=expires_in),
            method="GET",
            response_disposition=disposition,
        )
