"""
Dispatch Orchestrator

Composes the dispatch flow for one conversation:
1. Resolve the endpoint (any failure aborts: no message row, no charge)
2. Send through the provider
3. Record the message (failed attempts are recorded too, then re-raised)
4. Meter credits for successful sends

A send cannot be undone. When metering fails after delivery, the result is
returned with billed=False and the billing error attached so the charge can
be reconciled later.

Steps 2-4 run in a shielded task: if the caller is cancelled while the
provider call is in flight, the call still completes and its outcome is
still recorded. The task keeps using the orchestrator's session.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from crmcore.settings import Settings, get_settings
from messaging_dispatch.errors import DispatchError, LedgerConflictError, NotFoundError, ProviderError
from messaging_dispatch.persistence import (
    AttachmentOwner,
    ChannelInstance,
    Contact,
    Conversation,
    DispatchRepository,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
)
from messaging_dispatch.routing import EndpointResolver, ResolvedEndpoint
from messaging_dispatch.service.attachments import AttachmentPipeline
from messaging_dispatch.service.compensation import CompensationRunner
from messaging_dispatch.service.credit_ledger import CreditLedger
from messaging_dispatch.service.dispatcher import (
    AttachmentPayload,
    OutboundDispatcher,
    Payload,
    TextPayload,
    validate_payload,
)
from messaging_dispatch.service.message_ledger import MessageLedger
from messaging_dispatch.storage import BlobStorage, get_storage

logger = logging.getLogger(__name__)

BILLING_ATTEMPTS = 3


@dataclass
class DispatchResult:
    """Outcome of a successful send."""

    message_id: UUID
    external_id: str | None
    conversation_id: UUID
    billed: bool
    credits_charged: int = 0
    new_balance: int | None = None
    billing_error: dict[str, Any] | None = None
    attachment_id: UUID | None = None

    @property
    def delivered_unbilled(self) -> bool:
        return not self.billed

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": str(self.message_id),
            "external_id": self.external_id,
            "conversation_id": str(self.conversation_id),
            "billed": self.billed,
            "credits_charged": self.credits_charged,
            "new_balance": self.new_balance,
            "billing_error": self.billing_error,
            "attachment_id": str(self.attachment_id) if self.attachment_id else None,
        }


@dataclass
class ConversationView:
    """A conversation with its endpoint records and recent messages."""

    conversation: Conversation
    instance: ChannelInstance
    contact: Contact | None
    messages: list[Message] = field(default_factory=list)


class DispatchOrchestrator:
    """Entry point for sending messages from a conversation."""

    def __init__(
        self,
        db: Session,
        dispatcher: OutboundDispatcher | None = None,
        storage: BlobStorage | None = None,
        compensation: CompensationRunner | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.repo = DispatchRepository(db)
        self.resolver = EndpointResolver(db, self.settings)
        self.dispatcher = dispatcher or OutboundDispatcher(settings=self.settings)
        self.messages = MessageLedger(db)
        self.credits = CreditLedger(db)
        self.storage = storage or get_storage(self.settings)
        self.compensation = compensation or CompensationRunner(
            attempts=self.settings.COMPENSATION_ATTEMPTS
        )
        self.attachments = AttachmentPipeline(db, self.storage, self.compensation, self.settings)
        self._in_flight: set[asyncio.Task] = set()

    # =========================================================================
    # Sends
    # =========================================================================

    async def dispatch_text(
        self,
        conversation_id: UUID,
        company_id: UUID,
        body: str,
        is_automated: bool = False,
        user_id: UUID | None = None,
    ) -> DispatchResult:
        """Send a text message to a conversation."""
        payload = TextPayload(body=body)
        validate_payload(payload)
        endpoint = self.resolver.resolve(conversation_id, company_id)
        return await self._dispatch(endpoint, payload, is_automated, user_id)

    async def dispatch_attachment(
        self,
        conversation_id: UUID,
        company_id: UUID,
        reference: str | None = None,
        caption: str | None = None,
        file_name: str | None = None,
        mime_type: str | None = None,
        attachment_id: UUID | None = None,
        is_automated: bool = False,
        user_id: UUID | None = None,
    ) -> DispatchResult:
        """
        Send an attachment to a conversation.

        The attachment is either a public URL (reference) or a stored
        attachment of the same company (attachment_id).
        """
        if attachment_id is not None:
            stored = self.repo.get_active_attachment(attachment_id, company_id)
            if stored is None:
                raise NotFoundError("Attachment not found")
            reference = stored.file_url
            file_name = file_name or stored.file_name
            mime_type = mime_type or stored.file_type

        payload = AttachmentPayload(
            reference=reference or "",
            caption=caption,
            file_name=file_name,
            mime_type=mime_type,
        )
        validate_payload(payload)
        endpoint = self.resolver.resolve(conversation_id, company_id)
        result = await self._dispatch(endpoint, payload, is_automated, user_id)
        result.attachment_id = attachment_id
        return result

    async def send_upload(
        self,
        conversation_id: UUID,
        company_id: UUID,
        payload: str | bytes,
        file_name: str,
        file_type: str,
        caption: str | None = None,
        user_id: UUID | None = None,
    ) -> DispatchResult:
        """
        Store an uploaded file as conversation media, then send it.

        The endpoint is resolved before the upload so a disconnected instance
        never leaves stored media behind.
        """
        endpoint = self.resolver.resolve(conversation_id, company_id)

        attachment = await self.attachments.ingest(
            owner_id=conversation_id,
            company_id=company_id,
            payload=payload,
            file_name=file_name,
            file_type=file_type,
            category="image" if (file_type or "").startswith("image/") else "document",
            owner_type=AttachmentOwner.CONVERSATION,
            description=caption,
            uploaded_by=user_id,
        )

        media = AttachmentPayload(
            reference=attachment.file_url,
            caption=caption,
            file_name=attachment.file_name,
            mime_type=attachment.file_type,
        )
        result = await self._dispatch(endpoint, media, False, user_id)
        result.attachment_id = attachment.id
        return result

    async def mark_read(
        self,
        conversation_id: UUID,
        company_id: UUID,
        message_external_id: str | None = None,
    ) -> str | None:
        """
        Mark an inbound message as read (the latest one by default).

        Returns:
            Provider id of the message marked as read, or None when the
            conversation has no inbound message to mark
        """
        endpoint = self.resolver.resolve(conversation_id, company_id)

        if not message_external_id:
            last = self.repo.get_last_inbound_with_external_id(conversation_id, company_id)
            if last is None:
                logger.debug(f"Nothing to mark as read in conversation {conversation_id}")
                return None
            message_external_id = last.external_id

        await self.dispatcher.mark_read(endpoint, message_external_id)
        logger.info(
            "Marked message as read",
            extra={"conversation_id": str(conversation_id), "external_id": message_external_id},
        )
        return message_external_id

    # =========================================================================
    # Reads
    # =========================================================================

    def get_conversation(
        self,
        conversation_id: UUID,
        company_id: UUID,
        limit: int = 20,
    ) -> ConversationView:
        """Conversation summary with its most recent messages (chronological)."""
        bundle = self.repo.get_conversation_bundle(conversation_id, company_id)
        if bundle is None:
            raise NotFoundError("Conversation not found or not accessible")
        conversation, instance, contact = bundle
        return ConversationView(
            conversation=conversation,
            instance=instance,
            contact=contact,
            messages=self.messages.recent_messages(conversation_id, company_id, limit),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _dispatch(
        self,
        endpoint: ResolvedEndpoint,
        payload: Payload,
        is_automated: bool,
        user_id: UUID | None,
    ) -> DispatchResult:
        task = asyncio.ensure_future(
            self._send_record_meter(endpoint, payload, is_automated, user_id)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Nobody awaits the outcome any more; collect it here
            task.add_done_callback(self._log_detached_outcome)
            raise

    @staticmethod
    def _log_detached_outcome(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        extra = {"code": getattr(error, "code", type(error).__name__)}
        if isinstance(error, ProviderError) and error.message_id:
            extra["message_id"] = error.message_id
        logger.warning(f"Detached send failed after caller cancelled: {error}", extra=extra)

    async def _send_record_meter(
        self,
        endpoint: ResolvedEndpoint,
        payload: Payload,
        is_automated: bool,
        user_id: UUID | None,
    ) -> DispatchResult:
        if isinstance(payload, TextPayload):
            kind = MessageKind.TEXT
            content = payload.body
            attachment = None
            cost = self.settings.CREDITS_PER_TEXT
        else:
            kind = MessageKind.ATTACHMENT
            content = payload.caption
            attachment = {
                "url": payload.reference,
                "name": payload.file_name,
                "mime_type": payload.mime_type,
                "caption": payload.caption,
            }
            cost = self.settings.CREDITS_PER_ATTACHMENT

        meta = {"instance": endpoint.instance_name, "provider": endpoint.provider}

        try:
            provider_result = await self.dispatcher.send(endpoint, payload)
        except ProviderError as e:
            try:
                failed = self.messages.record(
                    endpoint.conversation_id,
                    endpoint.company_id,
                    MessageDirection.OUTBOUND,
                    kind,
                    content=content,
                    attachment=attachment,
                    is_automated=is_automated,
                    status=MessageStatus.FAILED,
                    error_code=e.code,
                    error_message=e.message,
                    meta=meta,
                )
            except DispatchError as record_error:
                logger.error(
                    f"Send failed and the failed attempt was not recorded: {e.message}",
                    extra={
                        "conversation_id": str(endpoint.conversation_id),
                        "code": e.code,
                        "record_error": record_error.code,
                    },
                )
                raise e from None

            e.message_id = str(failed.id)
            logger.warning(
                f"Send failed: {e.message}",
                extra={
                    "conversation_id": str(endpoint.conversation_id),
                    "message_id": str(failed.id),
                    "code": e.code,
                },
            )
            raise

        message = self.messages.record(
            endpoint.conversation_id,
            endpoint.company_id,
            MessageDirection.OUTBOUND,
            kind,
            content=content,
            attachment=attachment,
            is_automated=is_automated,
            external_id=provider_result.message_id,
            status=MessageStatus.SENT,
            meta=meta,
        )

        result = DispatchResult(
            message_id=message.id,
            external_id=provider_result.message_id,
            conversation_id=endpoint.conversation_id,
            billed=True,
        )
        if cost <= 0:
            return result

        description = f"WhatsApp {kind.value} to {endpoint.contact_name or endpoint.address}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(BILLING_ATTEMPTS),
                wait=wait_exponential(multiplier=0.05, max=0.5),
                retry=retry_if_exception_type(LedgerConflictError),
                reraise=True,
            ):
                with attempt:
                    new_balance = self.credits.consume(
                        endpoint.company_id,
                        cost,
                        self.settings.BILLING_SERVICE_TYPE,
                        description,
                        context={
                            "feature": "conversation_send",
                            "conversation_id": endpoint.conversation_id,
                            "request_id": str(message.id),
                            "user_id": user_id,
                        },
                    )
        except DispatchError as e:
            logger.warning(
                "Message delivered but not billed",
                extra={
                    "conversation_id": str(endpoint.conversation_id),
                    "message_id": str(message.id),
                    "code": e.code,
                },
            )
            result.billed = False
            result.billing_error = e.to_dict()
            return result

        result.credits_charged = cost
        result.new_balance = new_balance
        return result
