"""
Dispatch Payload Models

Pydantic models for requests accepted by the HTTP app.
Semantic validation (positive amounts, known categories,
base64 decoding) stays in the services so every caller gets the same errors.
"""

from uuid import UUID

from pydantic import BaseModel, Field


class SendTextRequest(BaseModel):
    """Send a text message to a conversation."""

    conversation_id: UUID = Field(..., description="Conversation ID")
    message: str = Field(..., description="Message text")
    is_automated: bool = Field(False, description="Sent by automation rather than a person")
    user_id: UUID | None = Field(None, description="Acting user")


class SendAttachmentRequest(BaseModel):
    """
    Send an attachment to a conversation.

    Either attachment_url (any public URL) or attachment_id (a stored attachment).
    """

    conversation_id: UUID = Field(..., description="Conversation ID")
    attachment_url: str | None = Field(None, description="Public URL of the media")
    attachment_id: UUID | None = Field(None, description="Stored attachment ID")
    caption: str | None = Field(None, description="Caption")
    file_name: str | None = Field(None, description="File name shown to the recipient")
    mime_type: str | None = Field(None, description="MIME type (selects image/video/audio/document)")
    is_automated: bool = Field(False, description="Sent by automation rather than a person")
    user_id: UUID | None = Field(None, description="Acting user")


class UploadAndSendRequest(BaseModel):
    """Upload a base64 file as conversation media and send it."""

    conversation_id: UUID = Field(..., description="Conversation ID")
    file_base64: str = Field(..., description="Base64 payload (data URLs accepted)")
    file_name: str = Field(..., description="Original file name")
    file_type: str = Field(..., description="MIME type")
    caption: str | None = Field(None, description="Caption")
    user_id: UUID | None = Field(None, description="Acting user")


class MarkReadRequest(BaseModel):
    """Mark an inbound message of a conversation as read."""

    conversation_id: UUID = Field(..., description="Conversation ID")
    message_id: str | None = Field(None, description="Provider message ID (latest inbound when omitted)")


class AttachmentUploadRequest(BaseModel):
    """Attach a base64 file to a lead."""

    file_base64: str = Field(..., description="Base64 payload (data URLs accepted)")
    file_name: str = Field(..., description="Original file name")
    file_type: str = Field(..., description="MIME type")
    description: str | None = Field(None, description="Free text description")
    category: str = Field("document", description="document, image, contract, proposal or other")
    uploaded_by: UUID | None = Field(None, description="Uploading user")


class ConsumeCreditsRequest(BaseModel):
    """Debit credits for a billable action."""

    credits_to_consume: int = Field(..., description="Credits to debit")
    service_type: str = Field(..., description="Billing category")
    description: str = Field(..., description="Reason for the charge")
    feature: str | None = Field(None, description="Calling feature")
    user_id: UUID | None = Field(None, description="Acting user")
    tokens_used: int | None = Field(None, description="Tokens used (AI features)")
    model_used: str | None = Field(None, description="Model used (AI features)")
    request_id: str | None = Field(None, description="Causing request ID")
    conversation_id: UUID | None = Field(None, description="Related conversation")

    def context(self) -> dict:
        """Linkage fields stored on the usage transaction."""
        return {
            "feature": self.feature or "API External",
            "user_id": self.user_id,
            "tokens_used": self.tokens_used,
            "model_used": self.model_used,
            "request_id": self.request_id,
            "conversation_id": self.conversation_id,
        }


class AddCreditsRequest(BaseModel):
    """Credit the account."""

    credits_to_add: int = Field(..., description="Credits to add")
    description: str = Field(..., description="Reason for the deposit")
    reference: str | None = Field(None, description="External reference (e.g. payment ID)")
    type: str = Field("purchase", description="purchase, bonus or refund")
    user_id: UUID | None = Field(None, description="Acting user")
