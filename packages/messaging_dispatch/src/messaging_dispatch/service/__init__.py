"""
Dispatch Services

Attachment ingestion, outbound dispatch, message and credit ledgers,
the dispatch orchestrator and the inbound webhook handler.
"""

from messaging_dispatch.service.attachments import AttachmentPipeline
from messaging_dispatch.service.compensation import CompensationRunner
from messaging_dispatch.service.credit_ledger import CreditLedger, ServiceUsage, UsageStats
from messaging_dispatch.service.dispatcher import (
    AttachmentPayload,
    OutboundDispatcher,
    TextPayload,
    get_provider_for_endpoint,
)
from messaging_dispatch.service.inbound_handler import InboundHandler
from messaging_dispatch.service.message_ledger import MessageLedger
from messaging_dispatch.service.orchestrator import (
    ConversationView,
    DispatchOrchestrator,
    DispatchResult,
)

__all__ = [
    "AttachmentPayload",
    "AttachmentPipeline",
    "CompensationRunner",
    "ConversationView",
    "CreditLedger",
    "DispatchOrchestrator",
    "DispatchResult",
    "InboundHandler",
    "MessageLedger",
    "OutboundDispatcher",
    "ServiceUsage",
    "TextPayload",
    "UsageStats",
    "get_provider_for_endpoint",
]
