"""
Inbound Message Handler

Records incoming provider messages in the message ledger:
1. Routes the webhook to a channel instance by instance name
2. Parses the payload with the instance's provider
3. Finds the conversation by thread address
4. Records the message (idempotent on the provider message id)

Unknown instances and unknown threads are ignored; creating conversations
belongs to the CRM, not to the dispatch core.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from messaging_dispatch.errors import DuplicateMessageError
from messaging_dispatch.persistence import (
    ChannelInstance,
    DispatchRepository,
    MessageDirection,
    MessageKind,
    MessageStatus,
)
from messaging_dispatch.providers.base import ChannelProvider, InboundMessage, InboundType
from messaging_dispatch.providers.evolution import EvolutionChannelProvider, extract_instance_name
from messaging_dispatch.providers.stub import StubChannelProvider
from messaging_dispatch.service.message_ledger import MessageLedger

logger = logging.getLogger(__name__)


def get_parser_for_instance(instance: ChannelInstance) -> ChannelProvider:
    """Provider used only to parse webhooks (never sends)."""
    if instance.provider == "stub":
        return StubChannelProvider(instance_name=instance.name)
    return EvolutionChannelProvider(
        api_url=instance.api_url or "",
        api_key="",
        instance_name=instance.name,
    )


class InboundHandler:
    """Handles incoming provider webhooks."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = DispatchRepository(db)
        self.messages = MessageLedger(db)

    def handle_webhook(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Process a webhook payload.

        Returns:
            Processing result dict with recorded/skipped counts
        """
        instance_name = extract_instance_name(payload)
        if not instance_name:
            return {"status": "ignored", "reason": "no_instance"}

        instance = self.repo.get_instance_by_name(instance_name)
        if instance is None:
            logger.info(f"Webhook for unknown instance {instance_name}, ignoring")
            return {"status": "ignored", "reason": "unknown_instance"}

        inbound = get_parser_for_instance(instance).parse_webhook(payload)

        recorded = 0
        skipped = 0
        for msg in inbound:
            if self._handle_message(instance, msg):
                recorded += 1
            else:
                skipped += 1

        return {"status": "processed", "recorded": recorded, "skipped": skipped}

    def _handle_message(self, instance: ChannelInstance, msg: InboundMessage) -> bool:
        if msg.from_me:
            return False

        conversation = self.repo.find_conversation_by_thread(
            instance.company_id, instance.id, msg.remote_jid
        )
        if conversation is None:
            logger.info(
                "Inbound message for unknown conversation, ignoring",
                extra={"instance": instance.name, "message_id": msg.message_id},
            )
            return False

        if self.repo.message_exists(conversation.id, msg.message_id):
            logger.debug(f"Message {msg.message_id} already recorded, skipping")
            return False

        attachment = None
        content = msg.text
        kind = MessageKind.TEXT
        if msg.message_type not in (InboundType.TEXT, InboundType.UNKNOWN):
            kind = MessageKind.ATTACHMENT
            content = msg.caption
            attachment = {
                "url": msg.media_url,
                "mime_type": msg.media_mime_type,
                "caption": msg.caption,
                "inbound_type": msg.message_type.value,
            }

        try:
            self.messages.record(
                conversation.id,
                conversation.company_id,
                MessageDirection.INBOUND,
                kind,
                content=content,
                attachment=attachment,
                external_id=msg.message_id,
                status=MessageStatus.SENT,
                meta={
                    "push_name": msg.contact_name,
                    "inbound_type": msg.message_type.value,
                    "provider_timestamp": msg.timestamp.isoformat(),
                },
            )
        except DuplicateMessageError:
            # A concurrent delivery of the same webhook recorded it first
            logger.debug(f"Message {msg.message_id} recorded concurrently, skipping")
            return False
        return True
