"""
Stub Blob Storage

In-memory storage for development and tests. Objects live in a dict
keyed by path; failures can be switched on per operation.
"""

import logging

from messaging_dispatch.errors import StorageError
from messaging_dispatch.storage.base import BlobStorage

logger = logging.getLogger(__name__)


class StubStorage(BlobStorage):
    """In-memory blob storage."""

    def __init__(self, bucket: str = "media", fail_put: bool = False, fail_remove: bool = False):
        self.bucket = bucket
        self.fail_put = fail_put
        self.fail_remove = fail_remove
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_calls = 0
        self.remove_calls = 0

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        self.put_calls += 1
        if self.fail_put:
            raise StorageError("Simulated storage upload failure", details={"path": path})
        self.objects[path] = (data, content_type)
        logger.debug(f"[STUB] Stored {len(data)} bytes at {path}")

    def public_url(self, path: str) -> str:
        return f"memory://{self.bucket}/{path}"

    async def remove(self, path: str) -> None:
        self.remove_calls += 1
        if self.fail_remove:
            raise StorageError("Simulated storage delete failure", details={"path": path})
        self.objects.pop(path, None)

    def read(self, reference: str) -> bytes | None:
        """Fetch stored bytes by path or public URL (for testing)."""
        prefix = f"memory://{self.bucket}/"
        path = reference[len(prefix):] if reference.startswith(prefix) else reference
        stored = self.objects.get(path)
        return stored[0] if stored else None
