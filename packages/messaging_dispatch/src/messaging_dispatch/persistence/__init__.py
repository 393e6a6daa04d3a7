"""
Dispatch Persistence

SQLAlchemy models and repositories for the dispatch core tables.
"""

from messaging_dispatch.persistence.models import (
    DispatchBase,
    Attachment,
    AttachmentOwner,
    ChannelInstance,
    CompanyCredits,
    Contact,
    Conversation,
    ConversationStatus,
    CreditTransaction,
    InstanceStatus,
    Lead,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
    TransactionType,
)
from messaging_dispatch.persistence.credit_repo import CreditRepository
from messaging_dispatch.persistence.repo import DispatchRepository

__all__ = [
    "DispatchBase",
    "Attachment",
    "AttachmentOwner",
    "ChannelInstance",
    "CompanyCredits",
    "Contact",
    "Conversation",
    "ConversationStatus",
    "CreditTransaction",
    "CreditRepository",
    "DispatchRepository",
    "InstanceStatus",
    "Lead",
    "Message",
    "MessageDirection",
    "MessageKind",
    "MessageStatus",
    "TransactionType",
]
