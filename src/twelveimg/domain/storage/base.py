from abc import ABC, abstractmethod
from typing import BinaryIO, Optional


class StorageService(ABC):
    """Abstract base class for one object storage bucket."""

    bucket_name: str

    @abstractmethod
    async def read_bytes(self, path: str) -> bytes:
        """
        Read a whole object.

        Raises:
            FileNotFoundError: the object does not exist.
            TransientStorageError: the store could not be reached.
        """

    @abstractmethod
    async def upload_fileobj(self, fileobj: BinaryIO, path: str, content_type: Optional[str] = None) -> int:
        """
        Stream a seekable file object to ``path``, overwriting any existing object.

        Returns:
            The number of bytes written.
        """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def delete_file(self, path: str) -> bool:
        """
        Delete a file from the storage.

        Returns:
            True if an object was deleted, False if there was nothing to delete.
        """

    @abstractmethod
    def generate_upload_url(self, path: str, content_type: Optional[str], expires_in: int) -> str:
        """Signed URL allowing a single direct PUT of ``path`` until it expires."""

    @abstractmethod
    def generate_download_url(self, path: str, expires_in: int, filename: Optional[str] = None) -> str:
        """Signed URL allowing GET of ``path`` until it expires."""
