"""
Dispatch Repository

Repository pattern for the dispatch core's record store.
Every query is scoped by company_id so cross-tenant access is impossible.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_dispatch.persistence.models import (
    Attachment,
    AttachmentOwner,
    ChannelInstance,
    Contact,
    Conversation,
    Lead,
    Message,
    MessageDirection,
    MessageStatus,
    utcnow,
)


class DispatchRepository:
    """Repository for dispatch core database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Conversations / endpoints
    # =========================================================================

    def get_conversation_bundle(
        self,
        conversation_id: UUID,
        company_id: UUID,
    ) -> tuple[Conversation, ChannelInstance, Contact | None] | None:
        """
        Load conversation, channel instance and contact in one query.

        The instance must belong to the same company as the conversation.
        """
        row = (
            self.db.query(Conversation, ChannelInstance, Contact)
            .join(
                ChannelInstance,
                (ChannelInstance.id == Conversation.channel_instance_id)
                & (ChannelInstance.company_id == Conversation.company_id),
            )
            .outerjoin(
                Contact,
                (Contact.id == Conversation.contact_id)
                & (Contact.company_id == Conversation.company_id),
            )
            .filter(
                Conversation.id == conversation_id,
                Conversation.company_id == company_id,
            )
            .first()
        )
        if row is None:
            return None
        return row[0], row[1], row[2]

    def get_conversation(self, conversation_id: UUID, company_id: UUID) -> Conversation | None:
        """Get conversation by ID within a company."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.id == conversation_id,
                Conversation.company_id == company_id,
            )
            .first()
        )

    def get_instance_by_name(self, instance_name: str) -> ChannelInstance | None:
        """Get channel instance by provider instance name (webhook routing)."""
        return (
            self.db.query(ChannelInstance)
            .filter(ChannelInstance.name == instance_name)
            .first()
        )

    def find_conversation_by_thread(
        self,
        company_id: UUID,
        channel_instance_id: UUID,
        external_id: str,
    ) -> Conversation | None:
        """Find a conversation by its provider thread address."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.company_id == company_id,
                Conversation.channel_instance_id == channel_instance_id,
                Conversation.external_id == external_id,
            )
            .first()
        )

    def touch_conversation(
        self,
        conversation_id: UUID,
        company_id: UUID,
        timestamp: datetime | None = None,
    ) -> int:
        """Bump last_message_at. Returns number of rows updated."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.id == conversation_id,
                Conversation.company_id == company_id,
            )
            .update(
                {Conversation.last_message_at: timestamp or utcnow()},
                synchronize_session=False,
            )
        )

    # =========================================================================
    # Messages
    # =========================================================================

    def create_message(
        self,
        company_id: UUID,
        conversation_id: UUID,
        direction: MessageDirection,
        message_type: str,
        content: str | None = None,
        attachment: dict[str, Any] | None = None,
        sent_by_ai: bool = False,
        external_id: str | None = None,
        status: MessageStatus = MessageStatus.PENDING,
        error_code: str | None = None,
        error_message: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Message:
        """Create a new message record."""
        now = utcnow()
        message = Message(
            company_id=company_id,
            conversation_id=conversation_id,
            direction=direction.value,
            message_type=message_type,
            content=content,
            attachment=attachment,
            sent_by_ai=sent_by_ai,
            external_id=external_id,
            status=status.value,
            error_code=error_code,
            error_message=error_message,
            sent_at=now if status == MessageStatus.SENT else None,
            status_updated_at=now,
            meta=meta or {},
        )
        self.db.add(message)
        return message

    def get_message(self, message_id: UUID, company_id: UUID) -> Message | None:
        """Get message by ID within a company."""
        return (
            self.db.query(Message)
            .filter(Message.id == message_id, Message.company_id == company_id)
            .first()
        )

    def message_exists(self, conversation_id: UUID, external_id: str) -> bool:
        """Check whether a provider message was already recorded (idempotency)."""
        return (
            self.db.query(Message.id)
            .filter(
                Message.conversation_id == conversation_id,
                Message.external_id == external_id,
            )
            .first()
            is not None
        )

    def get_recent_messages(
        self,
        conversation_id: UUID,
        company_id: UUID,
        limit: int = 20,
    ) -> list[Message]:
        """Get recent messages for a conversation, newest first."""
        return (
            self.db.query(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.company_id == company_id,
            )
            .order_by(Message.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_last_inbound_with_external_id(
        self,
        conversation_id: UUID,
        company_id: UUID,
    ) -> Message | None:
        """Get the latest inbound message that carries a provider id."""
        return (
            self.db.query(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.company_id == company_id,
                Message.direction == MessageDirection.INBOUND.value,
                Message.external_id.isnot(None),
            )
            .order_by(Message.created_at.desc())
            .first()
        )

    # =========================================================================
    # Attachment owners
    # =========================================================================

    def owner_exists(self, owner_type: AttachmentOwner, owner_id: UUID, company_id: UUID) -> bool:
        """Check that a lead/conversation exists and belongs to the company."""
        model = Lead if owner_type == AttachmentOwner.LEAD else Conversation
        return (
            self.db.query(model.id)
            .filter(model.id == owner_id, model.company_id == company_id)
            .first()
            is not None
        )

    # =========================================================================
    # Attachments
    # =========================================================================

    def create_attachment(self, **fields: Any) -> Attachment:
        """Create an attachment record."""
        attachment = Attachment(**fields)
        self.db.add(attachment)
        return attachment

    def get_active_attachment(
        self,
        attachment_id: UUID,
        company_id: UUID,
        owner_id: UUID | None = None,
    ) -> Attachment | None:
        """Get an attachment that has not been soft-deleted."""
        query = self.db.query(Attachment).filter(
            Attachment.id == attachment_id,
            Attachment.company_id == company_id,
            Attachment.is_active == True,  # noqa: E712
        )
        if owner_id is not None:
            query = query.filter(Attachment.owner_id == owner_id)
        return query.first()

    def list_active_attachments(
        self,
        owner_type: AttachmentOwner,
        owner_id: UUID,
        company_id: UUID,
    ) -> list[Attachment]:
        """List attachments of an owner that have not been soft-deleted."""
        return (
            self.db.query(Attachment)
            .filter(
                Attachment.company_id == company_id,
                Attachment.owner_type == owner_type.value,
                Attachment.owner_id == owner_id,
                Attachment.is_active == True,  # noqa: E712
            )
            .order_by(Attachment.created_at.desc())
            .all()
        )

    def soft_delete_attachment(self, attachment: Attachment) -> None:
        """Flip the soft-delete flag."""
        attachment.is_active = False
        attachment.deleted_at = utcnow()
