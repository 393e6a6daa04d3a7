"""
Stub Channel Provider

Development provider that logs all operations without making real API calls.
Useful for local development and testing.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from messaging_dispatch.errors import ProviderRejectedError, ProviderUnreachableError
from messaging_dispatch.providers.base import (
    ChannelProvider,
    InboundMessage,
    InboundType,
    MediaKind,
    ProviderResult,
)

logger = logging.getLogger(__name__)


class StubChannelProvider(ChannelProvider):
    """
    Stub provider for development and testing.

    - Records all outbound messages
    - Generates fake message IDs
    - Can be configured to fail every send ("rejected" or "unreachable")
    - Can be configured to take a while (send_delay, seconds)
    """

    def __init__(
        self,
        instance_name: str = "stub",
        fail_with: str | None = None,
        send_delay: float = 0.0,
    ):
        if fail_with not in (None, "rejected", "unreachable"):
            raise ValueError(f"Unknown stub failure mode: {fail_with}")
        self.instance_name = instance_name
        self.fail_with = fail_with
        self.send_delay = send_delay
        self.sent_messages: list[dict[str, Any]] = []
        self.read_receipts: list[dict[str, str]] = []

    async def _simulate(self) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_with == "unreachable":
            raise ProviderUnreachableError("Simulated connection failure")
        if self.fail_with == "rejected":
            raise ProviderRejectedError(
                "Simulated provider rejection",
                status_code=400,
                details={"stub": True},
            )

    def _record(self, message_data: dict[str, Any]) -> ProviderResult:
        message_id = f"stub_msg_{uuid4().hex[:16]}"
        message_data["message_id"] = message_id
        message_data["timestamp"] = datetime.now(timezone.utc).isoformat()
        self.sent_messages.append(message_data)
        return ProviderResult(
            message_id=message_id,
            raw_response={"stub": True, "key": {"id": message_id}},
        )

    async def send_text(
        self,
        to: str,
        text: str,
        delay: int | None = None,
    ) -> ProviderResult:
        """Record and return success for text message."""
        await self._simulate()
        result = self._record({"type": "text", "to": to, "text": text})

        logger.info(
            "[STUB] Sending text message",
            extra={
                "to": to,
                "text": text[:100] + "..." if len(text) > 100 else text,
                "message_id": result.message_id,
            },
        )
        return result

    async def send_media(
        self,
        to: str,
        media_url: str,
        media_kind: MediaKind,
        caption: str | None = None,
        file_name: str | None = None,
        mime_type: str | None = None,
        delay: int | None = None,
    ) -> ProviderResult:
        """Record and return success for media message."""
        await self._simulate()
        result = self._record(
            {
                "type": "media",
                "to": to,
                "media_url": media_url,
                "media_kind": media_kind.value,
                "caption": caption,
                "file_name": file_name,
                "mime_type": mime_type,
            }
        )

        logger.info(
            "[STUB] Sending media message",
            extra={"to": to, "kind": media_kind.value, "message_id": result.message_id},
        )
        return result

    async def mark_as_read(self, remote_jid: str, message_id: str) -> None:
        """Record a read receipt."""
        await self._simulate()
        self.read_receipts.append({"remote_jid": remote_jid, "message_id": message_id})
        logger.debug(f"[STUB] Marking message as read: {message_id}")

    def parse_webhook(self, payload: dict[str, Any]) -> list[InboundMessage]:
        """
        Parse webhook payload.

        In stub mode, we expect a simplified format for testing:
        {
            "from": "5511999999999",
            "text": "Hello",
            "message_id": "test_123"
        }
        """
        if "from" not in payload or "text" not in payload:
            return []

        from_address = str(payload["from"])
        return [
            InboundMessage(
                message_id=payload.get("message_id", f"stub_in_{uuid4().hex[:16]}"),
                instance_name=payload.get("instance", self.instance_name),
                remote_jid=payload.get("remote_jid", f"{from_address}@s.whatsapp.net"),
                from_address=from_address,
                message_type=InboundType.TEXT,
                timestamp=datetime.now(timezone.utc),
                text=payload.get("text"),
                contact_name=payload.get("name"),
                raw_payload=payload,
            )
        ]

    def get_sent_messages(self) -> list[dict[str, Any]]:
        """Get all sent messages (for testing)."""
        return self.sent_messages.copy()

    def clear_sent_messages(self) -> None:
        """Clear sent messages history (for testing)."""
        self.sent_messages.clear()
