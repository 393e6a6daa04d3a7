"""
Attachment Ingestion Pipeline

Decodes an uploaded payload, validates it, writes the bytes to blob storage
and records the attachment metadata.

The storage write and the metadata insert cannot be made atomic: when the
insert fails after a successful upload, the orphaned object is removed by a
detached compensation task.
"""

import base64
import binascii
import logging
import re
import time
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmcore.settings import Settings, get_settings
from messaging_dispatch.errors import (
    InternalError,
    InvalidArgumentError,
    InvalidEncodingError,
    NotFoundError,
    PayloadTooLargeError,
)
from messaging_dispatch.persistence import Attachment, AttachmentOwner, DispatchRepository
from messaging_dispatch.service.compensation import CompensationRunner
from messaging_dispatch.storage import BlobStorage

logger = logging.getLogger(__name__)

ATTACHMENT_CATEGORIES = ("document", "image", "contract", "proposal", "other")

STORAGE_PREFIXES = {
    AttachmentOwner.LEAD: ("lead-attachments", "lead"),
    AttachmentOwner.CONVERSATION: ("conversation-media", "conversation"),
}

_DATA_URL = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def decode_payload(payload: str | bytes) -> bytes:
    """
    Decode a base64 payload (optionally a data URL) to bytes.

    Raw bytes are passed through unchanged.

    Raises:
        InvalidEncodingError: Payload is not valid base64
    """
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)

    text = _DATA_URL.sub("", payload.strip(), count=1)
    text = "".join(text.split())
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidEncodingError("Payload is not valid base64") from e


def build_storage_path(
    owner_type: AttachmentOwner,
    company_id: UUID,
    owner_id: UUID,
    file_name: str,
    timestamp_ms: int | None = None,
) -> str:
    """Path namespaced by company and owner: {prefix}/{company}/{kind}_{owner}_{ts}_{name}."""
    prefix, kind = STORAGE_PREFIXES[owner_type]
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    safe_name = _UNSAFE_NAME_CHARS.sub("_", file_name).strip("_") or "file"
    return f"{prefix}/{company_id}/{kind}_{owner_id}_{ts}_{safe_name}"


class AttachmentPipeline:
    """Ingests, lists and soft-deletes attachments."""

    def __init__(
        self,
        db: Session,
        storage: BlobStorage,
        compensation: CompensationRunner | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.repo = DispatchRepository(db)
        self.storage = storage
        self.settings = settings or get_settings()
        self.compensation = compensation or CompensationRunner(
            attempts=self.settings.COMPENSATION_ATTEMPTS
        )

    async def ingest(
        self,
        owner_id: UUID,
        company_id: UUID,
        payload: str | bytes,
        file_name: str,
        file_type: str,
        category: str = "document",
        owner_type: AttachmentOwner = AttachmentOwner.LEAD,
        description: str | None = None,
        uploaded_by: UUID | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Attachment:
        """
        Store an attachment and record its metadata.

        Raises:
            InvalidArgumentError: Missing name/type/payload or unknown category
            InvalidEncodingError: Payload does not decode
            PayloadTooLargeError: Decoded size above MAX_ATTACHMENT_BYTES
            NotFoundError: Owner missing or not owned by the company
            StorageError: Upload failed (no metadata written)
            InternalError: Metadata insert failed (upload is compensated)
        """
        if not payload or not file_name or not file_type:
            raise InvalidArgumentError(
                "Required parameters: payload, file_name, file_type",
                details={"categories": list(ATTACHMENT_CATEGORIES)},
            )
        if category not in ATTACHMENT_CATEGORIES:
            raise InvalidArgumentError(
                f"Unknown category: {category}",
                details={"categories": list(ATTACHMENT_CATEGORIES)},
            )

        data = decode_payload(payload)
        if not data:
            raise InvalidArgumentError("Payload decodes to zero bytes")

        max_size = self.settings.MAX_ATTACHMENT_BYTES
        if len(data) > max_size:
            raise PayloadTooLargeError(received_size=len(data), max_size=max_size)

        if not self.repo.owner_exists(owner_type, owner_id, company_id):
            raise NotFoundError(
                f"{owner_type.value.capitalize()} not found",
                details={"owner_type": owner_type.value, "owner_id": str(owner_id)},
            )

        path = build_storage_path(owner_type, company_id, owner_id, file_name)

        # StorageError propagates; nothing has been written to the record store
        await self.storage.put(path, data, file_type)
        file_url = self.storage.public_url(path)

        try:
            attachment = self.repo.create_attachment(
                company_id=company_id,
                owner_type=owner_type.value,
                owner_id=owner_id,
                file_name=file_name,
                file_type=file_type,
                file_size=len(data),
                storage_path=path,
                file_url=file_url,
                description=description,
                category=category,
                uploaded_by=uploaded_by,
                meta={
                    "uploaded_via": "api",
                    "original_name": file_name,
                    "mime_type": file_type,
                    **(meta or {}),
                },
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Failed to save attachment metadata: {e}",
                extra={"company_id": str(company_id), "path": path},
            )
            self.compensation.schedule("remove orphaned upload", self.storage.remove, path)
            raise InternalError("Failed to save attachment metadata") from e

        logger.info(
            "Attachment stored",
            extra={
                "attachment_id": str(attachment.id),
                "owner_type": owner_type.value,
                "owner_id": str(owner_id),
                "size": len(data),
                "category": category,
            },
        )
        return attachment

    def list_attachments(
        self,
        owner_id: UUID,
        company_id: UUID,
        owner_type: AttachmentOwner = AttachmentOwner.LEAD,
    ) -> list[Attachment]:
        """Active (not soft-deleted) attachments of an owner, newest first."""
        if not self.repo.owner_exists(owner_type, owner_id, company_id):
            raise NotFoundError(f"{owner_type.value.capitalize()} not found")
        return self.repo.list_active_attachments(owner_type, owner_id, company_id)

    async def delete_attachment(
        self,
        attachment_id: UUID,
        company_id: UUID,
        owner_id: UUID | None = None,
    ) -> Attachment:
        """
        Soft-delete an attachment and schedule removal of its stored object.

        The logical delete succeeds regardless of the storage outcome.
        """
        attachment = self.repo.get_active_attachment(attachment_id, company_id, owner_id)
        if attachment is None:
            raise NotFoundError("Attachment not found")

        try:
            self.repo.soft_delete_attachment(attachment)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise InternalError("Failed to delete attachment") from e

        self.compensation.schedule("remove deleted attachment", self.storage.remove, attachment.storage_path)

        logger.info(
            "Attachment soft-deleted",
            extra={"attachment_id": str(attachment_id), "company_id": str(company_id)},
        )
        return attachment
