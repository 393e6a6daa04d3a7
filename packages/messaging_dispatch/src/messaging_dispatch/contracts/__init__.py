"""
Dispatch Contracts

Request models accepted by the HTTP app.
"""

from messaging_dispatch.contracts.payloads import (
    AddCreditsRequest,
    AttachmentUploadRequest,
    ConsumeCreditsRequest,
    MarkReadRequest,
    SendAttachmentRequest,
    SendTextRequest,
    UploadAndSendRequest,
)

__all__ = [
    "AddCreditsRequest",
    "AttachmentUploadRequest",
    "ConsumeCreditsRequest",
    "MarkReadRequest",
    "SendAttachmentRequest",
    "SendTextRequest",
    "UploadAndSendRequest",
]
