"""
Supabase Storage Backend

Talks to the Supabase Storage REST API:
- POST   /storage/v1/object/{bucket}/{path}        upload
- DELETE /storage/v1/object/{bucket}               remove ({"prefixes": [...]})
- GET    /storage/v1/object/public/{bucket}/{path} public read
"""

import logging
from urllib.parse import quote

import httpx

from messaging_dispatch.errors import StorageError
from messaging_dispatch.storage.base import BlobStorage

logger = logging.getLogger(__name__)


class SupabaseStorage(BlobStorage):
    """Blob storage backed by a Supabase bucket."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "media",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "apikey": self.service_key,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path)}"

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        client = await self._get_client()
        try:
            response = await client.post(
                self._object_url(path),
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
        except httpx.RequestError as e:
            raise StorageError(f"Storage upload failed: {e!r}", details={"path": path}) from e

        if response.status_code >= 400:
            raise StorageError(
                f"Storage upload rejected: HTTP {response.status_code}",
                details={"path": path, "body": response.text[:500]},
            )

        logger.info(
            "Stored object",
            extra={"bucket": self.bucket, "path": path, "size": len(data)},
        )

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    async def remove(self, path: str) -> None:
        client = await self._get_client()
        try:
            response = await client.request(
                "DELETE",
                f"{self.base_url}/storage/v1/object/{self.bucket}",
                json={"prefixes": [path]},
            )
        except httpx.RequestError as e:
            raise StorageError(f"Storage delete failed: {e!r}", details={"path": path}) from e

        if response.status_code >= 400:
            raise StorageError(
                f"Storage delete rejected: HTTP {response.status_code}",
                details={"path": path, "body": response.text[:500]},
            )
