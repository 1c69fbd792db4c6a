import asyncio
import logging
import mimetypes
import random
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from itertools import islice
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

import httpx

from twelveimg.client.api import ApiError, GalleryApiClient, Grant, StorageUploadError
from twelveimg.client.compression import read_image
from twelveimg.client.concurrency import AdaptiveConcurrencyController
from twelveimg.client.grants import SIGNED_URL_BATCH_SIZE, GrantPrefetcher

logger = logging.getLogger(__name__)

MAX_CONCURRENT_UPLOADS = 12
PREFETCH_AHEAD = 30
CONFIRM_BATCH_SIZE = 50
MAX_UPLOAD_ATTEMPTS = 3
ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_FILE_SIZE = 50 * 1024 * 1024


class UploadStatus(str, Enum):
    QUEUED = "queued"
    SIGNING = "signing"
    UPLOADING = "uploading"
    CONFIRMING = "confirming"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadTask:
    local_id: str
    path: Path
    original_filename: str
    mime_type: str
    file_size_bytes: int
    compressed: bool = False
    status: UploadStatus = UploadStatus.QUEUED
    retry_count: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    uploaded_size: Optional[int] = None
    grant: Optional[Grant] = None
    image_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path) -> "UploadTask":
        path = Path(path)
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(
            local_id=uuid.uuid4().hex,
            path=path,
            original_filename=path.name,
            mime_type=mime_type,
            file_size_bytes=path.stat().st_size,
        )

    def grant_metadata(self) -> dict:
        return {
            "localId": self.local_id,
            "mimeType": self.mime_type,
            "fileSizeBytes": self.file_size_bytes,
            "originalFilename": self.original_filename,
        }

    def confirmation(self) -> dict:
        return {
            "storagePath": self.grant.storage_path,
            "token": self.grant.token,
            "originalFilename": self.original_filename,
            "fileSize": self.uploaded_size if self.uploaded_size is not None else self.file_size_bytes,
            "mimeType": self.mime_type,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class UploadReport:
    image_ids: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    bytes_uploaded: int = 0
    duration_seconds: float = 0.0
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return len(self.image_ids)


class UploadEngine:
    """
    Moves local files into a gallery: grants, direct uploads, confirmation.

    Uploads run in a worker pool whose size follows the adaptive controller
    and never exceeds its ceiling. Each file is retried with exponential
    backoff; a grant that storage rejects is discarded rather than reused.
    """

    def __init__(
        self,
        api: GalleryApiClient,
        gallery_id: str,
        max_concurrency: int = MAX_CONCURRENT_UPLOADS,
        compress: bool = True,
        max_attempts: int = MAX_UPLOAD_ATTEMPTS,
        max_file_size: int = MAX_FILE_SIZE,
        backoff_base_seconds: float = 0.5,
        controller: Optional[AdaptiveConcurrencyController] = None,
        prefetcher: Optional[GrantPrefetcher] = None,
        prefetch_ahead: int = PREFETCH_AHEAD,
        confirm_batch_size: int = CONFIRM_BATCH_SIZE,
        on_update: Optional[Callable[[UploadTask], None]] = None,
    ):
        self.api = api
        self.gallery_id = str(gallery_id)
        self.compress = compress
        self.max_attempts = max_attempts
        self.max_file_size = max_file_size
        self.backoff_base_seconds = backoff_base_seconds
        self.controller = controller or AdaptiveConcurrencyController(
            max_concurrency=max_concurrency,
            initial_concurrency=min(8, max_concurrency),
        )
        self.prefetcher = prefetcher or GrantPrefetcher(api, self.gallery_id, batch_size=SIGNED_URL_BATCH_SIZE)
        self.prefetch_ahead = prefetch_ahead
        self.confirm_batch_size = confirm_batch_size
        self.on_update = on_update

        self.tasks: List[UploadTask] = []
        self._pending: Deque[UploadTask] = deque()
        self._running: Set[asyncio.Task] = set()
        self._unconfirmed: List[UploadTask] = []
        self._cancelled = False
        self._bytes_uploaded = 0

    def _set_status(self, task: UploadTask, status: UploadStatus, error: Optional[str] = None) -> None:
        task.status = status
        if error is not None:
            task.error = error
        if self.on_update:
            self.on_update(task)

    def _fail(self, task: UploadTask, error: str) -> None:
        logger.warning(f"Upload of {task.original_filename} failed: {error}")
        self._set_status(task, UploadStatus.FAILED, error)

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base_seconds * (2 ** (attempt - 1)) * random.uniform(0.8, 1.2)

    async def _upload_one(self, task: UploadTask) -> None:
        try:
            prepared = await asyncio.to_thread(read_image, task.path, task.mime_type, self.compress)
        except OSError as e:
            self._fail(task, f"Could not read file: {e}")
            return
        task.compressed = prepared.compressed
        task.width, task.height = prepared.width, prepared.height
        content = prepared.content

        for attempt in range(1, self.max_attempts + 1):
            self._set_status(task, UploadStatus.SIGNING)
            try:
                upcoming = list(islice(self._pending, self.prefetch_ahead))
                grant = await self.prefetcher.acquire(task, upcoming)
            except ApiError as e:
                if not e.retryable:
                    self._fail(task, e.detail)
                    return
                error = e.detail
            except (httpx.HTTPError, LookupError) as e:
                error = str(e) or type(e).__name__
            else:
                self._set_status(task, UploadStatus.UPLOADING)
                start = time.monotonic()
                try:
                    await self.api.put_file(grant.signed_url, content, task.mime_type)
                except (httpx.HTTPError, StorageUploadError) as e:
                    self.controller.record(False)
                    # a rejected grant is dropped; the next attempt requests a new one
                    if not (isinstance(e, StorageUploadError) and e.grant_rejected):
                        self.prefetcher.restore(grant)
                    error = str(e) or type(e).__name__
                else:
                    self.controller.record(True, len(content), time.monotonic() - start)
                    task.grant = grant
                    task.uploaded_size = len(content)
                    self._bytes_uploaded += len(content)
                    self._set_status(task, UploadStatus.CONFIRMING)
                    return

            if attempt < self.max_attempts:
                task.retry_count += 1
                delay = self._backoff(attempt)
                logger.info(f"Retrying {task.original_filename} in {delay:.1f}s (attempt {attempt}): {error}")
                await asyncio.sleep(delay)

        self._fail(task, f"Upload failed after {self.max_attempts} attempts: {error}")

    async def _run_task(self, task: UploadTask) -> None:
        try:
            await self._upload_one(task)
        except Exception as e:
            logger.exception(f"Unexpected error uploading {task.original_filename}")
            self._fail(task, str(e) or type(e).__name__)

    async def _dispatch(self) -> None:
        while self._pending and not self._cancelled:
            while self._pending and len(self._running) < self.controller.concurrency:
                task = self._pending.popleft()
                worker = asyncio.create_task(self._run_task(task))
                self._running.add(worker)
            done, _ = await asyncio.wait(self._running, return_when=asyncio.FIRST_COMPLETED)
            self._running.difference_update(done)

        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
            self._running.clear()

    async def _confirm_batch(self, batch: List[UploadTask]) -> List[str]:
        try:
            result = await self.api.confirm_uploads(self.gallery_id, [t.confirmation() for t in batch])
        except (ApiError, httpx.HTTPError) as e:
            logger.error(f"Confirmation of {len(batch)} uploads failed: {e}")
            for task in batch:
                self._fail(task, "Confirm failed")
            self._unconfirmed.extend(batch)
            return []

        image_ids = iter(result.image_ids)
        confirmed = []
        for task in batch:
            error = result.failed.get(task.grant.storage_path)
            if error:
                self._fail(task, error)
                self._unconfirmed.append(task)
                continue
            task.image_id = next(image_ids, None)
            if task.image_id is None:
                self._fail(task, "No image id returned")
                self._unconfirmed.append(task)
                continue
            self._set_status(task, UploadStatus.DONE)
            confirmed.append(task.image_id)
        return confirmed

    async def _confirm(self, tasks: List[UploadTask]) -> List[str]:
        batches = [tasks[i:i + self.confirm_batch_size] for i in range(0, len(tasks), self.confirm_batch_size)]
        results = await asyncio.gather(*(self._confirm_batch(batch) for batch in batches))
        return [image_id for batch_ids in results for image_id in batch_ids]

    def _report(self, image_ids: List[str], start: float) -> UploadReport:
        return UploadReport(
            image_ids=image_ids,
            failed={t.local_id: t.error or "failed" for t in self.tasks if t.status == UploadStatus.FAILED},
            bytes_uploaded=self._bytes_uploaded,
            duration_seconds=time.monotonic() - start,
            cancelled=self._cancelled,
        )

    async def run(self, paths: Iterable[Path]) -> UploadReport:
        start = time.monotonic()
        self._cancelled = False
        self.tasks = [UploadTask.from_path(Path(p)) for p in paths]

        for task in self.tasks:
            if task.mime_type not in ALLOWED_MIME_TYPES:
                self._fail(task, f"Invalid file type: {task.mime_type}")
            elif task.file_size_bytes > self.max_file_size:
                self._fail(task, f"File too large: {task.original_filename}")
            else:
                self._pending.append(task)

        logger.info(f"Uploading {len(self._pending)} files to gallery {self.gallery_id}")
        first_window = list(islice(self._pending, self.prefetch_ahead))
        prefetch = self.prefetcher.prefetch(first_window)
        results = await asyncio.gather(self.api.warm(), prefetch, return_exceptions=True)
        if isinstance(results[1], Exception):
            # every acquire re-requests its grant, so surface the error there
            logger.warning(f"Initial grant prefetch failed: {results[1]}")

        await self._dispatch()

        uploaded = [t for t in self.tasks if t.status == UploadStatus.CONFIRMING]
        if self._cancelled:
            for task in self._pending:
                self._fail(task, "Cancelled")
            self._pending.clear()
            self._unconfirmed.extend(uploaded)
            return self._report([], start)

        image_ids = await self._confirm(uploaded)
        report = self._report(image_ids, start)
        logger.info(
            f"Upload finished: {report.succeeded} confirmed, {len(report.failed)} failed, "
            f"{report.bytes_uploaded} bytes in {report.duration_seconds:.1f}s"
        )
        return report

    def cancel(self) -> None:
        """Stop dispatching and abandon in-flight uploads. Nothing is rolled back on the server."""
        self._cancelled = True
        for worker in list(self._running):
            worker.cancel()
        for task in self.tasks:
            if task.status in (UploadStatus.SIGNING, UploadStatus.UPLOADING):
                self._fail(task, "Cancelled")

    async def confirm_failed(self) -> UploadReport:
        """Re-drive confirmation for uploads whose files reached storage but were not confirmed."""
        start = time.monotonic()
        retry, self._unconfirmed = self._unconfirmed, []
        for task in retry:
            task.error = None
            self._set_status(task, UploadStatus.CONFIRMING)
        self._cancelled = False
        image_ids = await self._confirm(retry)
        return self._report(image_ids, start)
