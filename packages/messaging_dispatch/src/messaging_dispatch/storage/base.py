"""
Blob Storage Base

Abstract interface for the content store that holds attachment bytes.
Implementations: Supabase Storage (production), in-memory Stub (development/testing).
"""

from abc import ABC, abstractmethod


class BlobStorage(ABC):
    """
    Abstract blob storage.

    Implementations raise StorageError for any failed operation.
    """

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> None:
        """
        Store bytes under a path.

        Args:
            path: Object path inside the bucket
            data: Raw bytes
            content_type: MIME type stored with the object
        """
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Return the fetchable URL of a stored object."""
        ...

    @abstractmethod
    async def remove(self, path: str) -> None:
        """Delete a stored object."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
