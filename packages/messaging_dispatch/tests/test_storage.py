"""
Tests for blob storage backends.
"""

import json

import httpx
import pytest

from messaging_dispatch.errors import StorageError
from messaging_dispatch.storage import StubStorage, SupabaseStorage, get_storage


def make_storage(handler) -> SupabaseStorage:
    return SupabaseStorage(
        base_url="https://proj.supabase.test/",
        service_key="service-key",
        bucket="media",
        transport=httpx.MockTransport(handler),
    )


class TestSupabaseStorage:
    """Tests for the Supabase REST backend."""

    @pytest.mark.asyncio
    async def test_put(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"Key": "media/lead-attachments/c1/a.pdf"})

        storage = make_storage(handler)
        await storage.put("lead-attachments/c1/a.pdf", b"%PDF", "application/pdf")
        await storage.close()

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/media/lead-attachments/c1/a.pdf"
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.headers["content-type"] == "application/pdf"
        assert request.headers["x-upsert"] == "false"
        assert request.content == b"%PDF"

    @pytest.mark.asyncio
    async def test_put_rejected(self):
        storage = make_storage(lambda request: httpx.Response(409, json={"error": "Duplicate"}))

        with pytest.raises(StorageError) as exc_info:
            await storage.put("a.pdf", b"x", "application/pdf")

        assert exc_info.value.details["path"] == "a.pdf"

    @pytest.mark.asyncio
    async def test_put_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StorageError):
            await make_storage(handler).put("a.pdf", b"x", "application/pdf")

    @pytest.mark.asyncio
    async def test_remove(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[])

        await make_storage(handler).remove("lead-attachments/c1/a.pdf")

        assert requests[0].method == "DELETE"
        assert requests[0].url.path == "/storage/v1/object/media"
        assert json.loads(requests[0].content) == {"prefixes": ["lead-attachments/c1/a.pdf"]}

    def test_public_url(self):
        storage = make_storage(lambda request: httpx.Response(200))

        assert storage.public_url("lead-attachments/c1/a b.pdf") == (
            "https://proj.supabase.test/storage/v1/object/public/media/lead-attachments/c1/a%20b.pdf"
        )


class TestGetStorage:
    def test_stub_when_unconfigured(self, settings):
        assert isinstance(get_storage(settings), StubStorage)

    def test_supabase_when_configured(self, settings):
        settings.STORAGE_URL = "https://proj.supabase.test"
        settings.STORAGE_KEY = "service-key"

        storage = get_storage(settings)

        assert isinstance(storage, SupabaseStorage)
        assert storage.bucket == "media"
