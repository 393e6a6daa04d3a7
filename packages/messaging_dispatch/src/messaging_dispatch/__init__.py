"""
Messaging Dispatch

Credit-metered outbound messaging: resolves a conversation to a live channel
endpoint, sends text or attachments through the provider, records every
attempt in the message ledger and meters successful sends against the
company's prepaid credit balance.

Usage:
    from messaging_dispatch.service import DispatchOrchestrator

    orchestrator = DispatchOrchestrator(db)
    result = await orchestrator.dispatch_text(conversation_id, company_id, "Hello!")
"""

__version__ = "0.1.0"
