import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from twelveimg.schemas.enum import ArchiveStatus, GalleryArchiveState
from twelveimg.schemas.upload import CamelModel


class ArchiveResponse(CamelModel):
    id: uuid.UUID
    gallery_id: uuid.UUID
    status: ArchiveStatus
    version: int
    image_count: int
    file_size_bytes: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = CamelModel.model_config | {"from_attributes": True}


class EnqueueArchiveResponse(CamelModel):
    archive_id: uuid.UUID
    is_new: bool
    status: ArchiveStatus


class ArchiveStatusResponse(CamelModel):
    state: GalleryArchiveState
    archive: Optional[ArchiveResponse] = None
    download_url: Optional[str] = None
    message: Optional[str] = None


class WorkerBatchResponse(CamelModel):
    success: bool = True
    processed: int = 0
    released: int = 0
    errors: List[str] = Field(default_factory=list)
    cleaned: Optional[int] = None
    duration_ms: int = 0


class CleanupResponse(CamelModel):
    cleaned: int


class CronHealthResponse(CamelModel):
    status: str = "ok"
    service: str = "archive-processor"
    timestamp: datetime
