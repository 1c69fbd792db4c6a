from enum import Enum


class ArchiveStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GalleryArchiveState(str, Enum):
    """What the gallery owner sees for the gallery's ZIP."""
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    OUTDATED = "outdated"
    FAILED = "failed"
