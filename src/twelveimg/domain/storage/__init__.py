from .base import StorageService
from .factory import get_archive_storage, get_images_storage, get_storage_client

__all__ = ["StorageService", "get_archive_storage", "get_images_storage", "get_storage_client"]
