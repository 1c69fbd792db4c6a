import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os

from twelveimg.core.config import configs
from twelveimg.core.exceptions import TransientStorageError, ValidationError
from twelveimg.core.security import sign_storage_url

from .base import StorageService

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class LocalStorageService(StorageService):
    """
    Filesystem bucket under MEDIA_ROOT/<bucket>.

    Signed URLs point at the local storage endpoint, which checks the HMAC
    before reading or writing.
    """

    def __init__(self, bucket_name: str, media_root: Optional[str] = None):
        self.bucket_name = bucket_name
        self.root = Path(media_root or configs.MEDIA_ROOT) / bucket_name
        self.root.mkdir(parents=True, exist_ok=True)
        logger.debug(f"LocalStorageService initialized with base path {self.root}")

    def resolve(self, path: str) -> Path:
        full_path = (self.root / path).resolve()
        if not full_path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes bucket: {path}")
        return full_path

    async def read_bytes(self, path: str) -> bytes:
        full_path = self.resolve(path)
        try:
            async with aiofiles.open(full_path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise TransientStorageError(f"Failed to read {path}: {e}") from e

    async def write_stream(self, path: str, chunks: AsyncIterator[bytes], max_bytes: Optional[int] = None) -> int:
        """
        Write an uploaded body to ``path`` without replacing an existing object.

        The body lands in a ``.part`` file first and is linked into place only
        once complete, so an oversized or interrupted upload leaves nothing.

        Raises:
            FileExistsError: ``path`` already holds an object.
            ValidationError: the body is larger than ``max_bytes``.
        """
        full_path = self.resolve(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        partial = full_path.with_name(f"{full_path.name}.{uuid.uuid4().hex}.part")
        written = 0
        try:
            async with aiofiles.open(partial, "wb") as out_file:
                async for chunk in chunks:
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise ValidationError(f"File too large: {path}")
                    await out_file.write(chunk)
            # link fails if the target exists; rename would silently replace it
            await asyncio.to_thread(os.link, partial, full_path)
        finally:
            if await aiofiles.os.path.exists(partial):
                await aiofiles.os.remove(partial)
        logger.info(f"Successfully saved {written} bytes to {full_path}")
        return written

    async def upload_fileobj(self, fileobj: BinaryIO, path: str, content_type: Optional[str] = None) -> int:
        full_path = self.resolve(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        fileobj.seek(0)
        written = 0
        try:
            async with aiofiles.open(full_path, "wb") as out_file:
                while chunk := fileobj.read(CHUNK_SIZE):
                    await out_file.write(chunk)
                    written += len(chunk)
        except OSError as e:
            raise TransientStorageError(f"Failed to write {path}: {e}") from e
        logger.info(f"Successfully saved {written} bytes to {full_path}")
        return written

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(self.resolve(path))

    async def delete_file(self, path: str) -> bool:
        full_path = self.resolve(path)
        logger.debug(f"Deleting file from local storage: {full_path}")
        if full_path.exists():
            os.remove(full_path)
            logger.info(f"Successfully deleted file: {full_path}")
            return True
        logger.warning(f"File not found for deletion: {full_path}")
        return False

    def _signed_url(self, path: str, method: str, expires_in: int, extra: Optional[dict] = None) -> str:
        expires_at = int(time.time()) + expires_in
        params = {
            "expires": expires_at,
            "signature": sign_storage_url(self.bucket_name, path, method, expires_at),
        }
        if extra:
            params.update(extra)
        base = configs.PUBLIC_BASE_URL.rstrip("/")
        return f"{base}/api/storage/{self.bucket_name}/{quote(path)}?{urlencode(params)}"

    def generate_upload_url(self, path: str, content_type: Optional[str], expires_in: int) -> str:
        return self._signed_url(path, "PUT", expires_in)

    def generate_download_url(self, path: str, expires_in: int, filename: Optional[str] = None) -> str:
        return self._signed_url(path, "GET", expires_in, {"filename": filename} if filename else None)
