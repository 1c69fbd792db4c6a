import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadFileMetadata(CamelModel):
    local_id: str
    mime_type: str
    file_size_bytes: int = Field(ge=0)
    original_filename: str


class UploadGrantRequest(CamelModel):
    gallery_id: uuid.UUID
    files: List[UploadFileMetadata] = Field(min_length=1)


class UploadGrant(CamelModel):
    local_id: str
    storage_path: str
    signed_url: str
    token: str
    expires_at: int


class ConfirmUploadItem(CamelModel):
    storage_path: str
    token: str
    original_filename: str
    file_size: int = Field(ge=0)
    mime_type: str
    width: Optional[int] = None
    height: Optional[int] = None


class ConfirmUploadsRequest(CamelModel):
    gallery_id: uuid.UUID
    uploads: List[ConfirmUploadItem] = Field(min_length=1)


class ConfirmFailure(CamelModel):
    storage_path: str
    error: str


class ConfirmUploadsResponse(CamelModel):
    image_ids: List[str]
    failed: List[ConfirmFailure] = []


class ExistingFilenamesResponse(CamelModel):
    gallery_id: uuid.UUID
    filenames: List[str]
