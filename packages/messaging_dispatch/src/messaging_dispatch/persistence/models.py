"""
Dispatch Database Models

Tables read and written by the dispatch core.

Tables:
- leads / contacts: owned by CRUD collaborators, read here for ownership checks
- channel_instances: configured provider connections (read-only to the core)
- conversations: threads between a company and a contact over one instance
- messages: every inbound/outbound message, including failed attempts
- attachments: ingested files (soft-deleted, never physically removed)
- company_credits: one prepaid balance row per company
- credit_transactions: append-only log of balance mutations
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

DispatchBase = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceStatus(str, Enum):
    """Connection status of a channel instance."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConversationStatus(str, Enum):
    """Lifecycle status of a conversation."""

    ACTIVE = "active"
    CLOSED = "closed"


class MessageDirection(str, Enum):
    """Direction of a message."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageKind(str, Enum):
    """Ledger-level message type."""

    TEXT = "text"
    ATTACHMENT = "attachment"


class MessageStatus(str, Enum):
    """Delivery status of a message."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AttachmentOwner(str, Enum):
    """Entity an attachment belongs to."""

    LEAD = "lead"
    CONVERSATION = "conversation"


class TransactionType(str, Enum):
    """Credit transaction types."""

    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"
    REFUND = "refund"


class CompanyScopedMixin:
    """Common fields for all company-owned rows."""

    id = Column(Uuid, primary_key=True, default=uuid4)
    company_id = Column(Uuid, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Lead(DispatchBase, CompanyScopedMixin):
    """Sales lead. Only the fields the attachment pipeline reads."""

    __tablename__ = "leads"

    title = Column(String(255), nullable=False)


class Contact(DispatchBase, CompanyScopedMixin):
    """Person on the other side of a conversation."""

    __tablename__ = "contacts"

    full_name = Column(String(255), nullable=True)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class ChannelInstance(DispatchBase, CompanyScopedMixin):
    """
    A configured connection to an external messaging provider.

    ``name`` is the provider-side instance name used in API paths and webhooks.
    ``api_key`` may be Fernet-encrypted when ENCRYPTION_KEY is configured.
    """

    __tablename__ = "channel_instances"

    name = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False, default="evolution")  # evolution, stub
    phone_number = Column(String(32), nullable=True)
    status = Column(String(20), nullable=False, default=InstanceStatus.DISCONNECTED.value)
    api_url = Column(String(255), nullable=True)
    api_key = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("name", name="uq_channel_instances_name"),
        Index("idx_channel_instances_company_status", "company_id", "status"),
    )


class Conversation(DispatchBase, CompanyScopedMixin):
    """
    Persistent thread between a company and a contact over one channel instance.

    ``external_id`` is the provider thread address, e.g. "5511999999999@s.whatsapp.net".
    """

    __tablename__ = "conversations"

    contact_id = Column(Uuid, nullable=True)
    channel_instance_id = Column(Uuid, nullable=False)
    external_id = Column(String(120), nullable=True)
    title = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=ConversationStatus.ACTIVE.value)
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_conversations_company_last_message", "company_id", "last_message_at"),
        Index("idx_conversations_instance_external", "channel_instance_id", "external_id"),
    )


class Message(DispatchBase, CompanyScopedMixin):
    """
    Immutable record of one message attempt or receipt.

    Only ``status`` may change, and only pending -> sent|failed.
    """

    __tablename__ = "messages"

    conversation_id = Column(Uuid, nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    message_type = Column(String(20), nullable=False, default=MessageKind.TEXT.value)
    content = Column(Text, nullable=True)
    attachment = Column(JSONType, nullable=True)  # {name, url, mime_type, caption}
    sent_by_ai = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=MessageStatus.PENDING.value)
    external_id = Column(String(120), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_messages_company_conversation", "company_id", "conversation_id"),
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
        Index("idx_messages_external_id", "external_id"),
        UniqueConstraint("conversation_id", "external_id", name="uq_messages_conversation_external"),
    )


class Attachment(DispatchBase, CompanyScopedMixin):
    """File ingested for a lead or conversation."""

    __tablename__ = "attachments"

    owner_type = Column(String(20), nullable=False, default=AttachmentOwner.LEAD.value)
    owner_id = Column(Uuid, nullable=False)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(120), nullable=False)
    file_size = Column(Integer, nullable=False)
    storage_path = Column(String(512), nullable=False)
    file_url = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(30), nullable=False, default="document")
    uploaded_by = Column(Uuid, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_attachments_owner_active", "company_id", "owner_type", "owner_id", "is_active"),
    )


class CompanyCredits(DispatchBase):
    """Prepaid credit balance, one row per company."""

    __tablename__ = "company_credits"

    company_id = Column(Uuid, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    # Bumped by every balance mutation; copied onto the transaction row
    last_sequence = Column(Integer, nullable=False, default=0)
    credit_details = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CreditTransaction(DispatchBase, CompanyScopedMixin):
    """
    Append-only record of one balance mutation.

    ``amount`` is always positive; ``type`` gives the direction. ``sequence``
    numbers the rows of one company in the order their balance updates committed.
    """

    __tablename__ = "credit_transactions"

    type = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    service_type = Column(String(80), nullable=True)
    feature = Column(String(120), nullable=True)
    reference = Column(String(255), nullable=True)
    request_id = Column(String(120), nullable=True)
    conversation_id = Column(Uuid, nullable=True)
    user_id = Column(Uuid, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    model_used = Column(String(120), nullable=True)

    __table_args__ = (
        Index("idx_credit_transactions_company_created", "company_id", "created_at"),
        Index("idx_credit_transactions_company_type", "company_id", "type"),
        Index("idx_credit_transactions_company_sequence", "company_id", "sequence"),
    )
