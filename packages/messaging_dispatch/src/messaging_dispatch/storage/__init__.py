"""
Blob Storage

Content store for attachment bytes.
"""

from crmcore.settings import Settings, get_settings
from messaging_dispatch.storage.base import BlobStorage
from messaging_dispatch.storage.stub import StubStorage
from messaging_dispatch.storage.supabase import SupabaseStorage


def get_storage(settings: Settings | None = None) -> BlobStorage:
    """Build the configured storage backend (stub when STORAGE_URL is unset)."""
    settings = settings or get_settings()
    if settings.STORAGE_URL and settings.STORAGE_KEY:
        return SupabaseStorage(
            base_url=settings.STORAGE_URL,
            service_key=settings.STORAGE_KEY,
            bucket=settings.STORAGE_BUCKET,
        )
    return StubStorage(bucket=settings.STORAGE_BUCKET)


__all__ = [
    "BlobStorage",
    "StubStorage",
    "SupabaseStorage",
    "get_storage",
]
