import logging
from functools import lru_cache

from twelveimg.core.config import configs

from .base import StorageService

logger = logging.getLogger(__name__)


class StorageFactory:
    @staticmethod
    def get_storage_service(bucket_name: str, service_type: str = "local") -> StorageService:
        logger.info(f"Creating storage service of type: {service_type} for bucket {bucket_name}")
        if service_type == "local":
            from .local import LocalStorageService

            return LocalStorageService(bucket_name)
        elif service_type == "gcs":
            from .gcs import GCSStorageService

            return GCSStorageService(bucket_name)
        else:
            logger.error(f"Unknown storage service type requested: {service_type}")
            raise ValueError(f"Unknown storage service type: {service_type}")


@lru_cache()
def get_storage_client(bucket_name: str) -> StorageService:
    storage_type = getattr(configs, "STORAGE_TYPE", "local")
    logger.debug(f"Getting storage client (cached). Type: {storage_type}, bucket: {bucket_name}")
    return StorageFactory.get_storage_service(bucket_name, storage_type)


def get_images_storage() -> StorageService:
    return get_storage_client(configs.IMAGES_BUCKET)


def get_archive_storage() -> StorageService:
    return get_storage_client(configs.ARCHIVE_BUCKET)
