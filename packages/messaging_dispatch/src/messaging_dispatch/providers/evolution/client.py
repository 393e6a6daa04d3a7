"""
Evolution API Channel Provider

Provider for Evolution API (Baileys-based WhatsApp Web integration).
Uses REST API to send messages; authenticated with the "apikey" header.

Documentation: https://doc.evolution-api.com/
"""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from messaging_dispatch.errors import ProviderRejectedError, ProviderUnreachableError
from messaging_dispatch.providers.base import (
    ChannelProvider,
    InboundMessage,
    InboundType,
    MediaKind,
    ProviderResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TEXT_DELAY = 1000
DEFAULT_MEDIA_DELAY = 1200

# Evolution message types -> inbound types
TYPE_MAPPING = {
    "conversation": InboundType.TEXT,
    "extendedTextMessage": InboundType.TEXT,
    "imageMessage": InboundType.IMAGE,
    "videoMessage": InboundType.VIDEO,
    "audioMessage": InboundType.AUDIO,
    "documentMessage": InboundType.DOCUMENT,
    "stickerMessage": InboundType.STICKER,
    "locationMessage": InboundType.LOCATION,
    "contactsArrayMessage": InboundType.CONTACTS,
}


def extract_error_message(data: Any, status_code: int) -> str:
    """
    Pull a human-readable error out of an Evolution response body.

    Evolution answers errors as {"error": {...}|"...", "response": {"message": [...]}}.
    """
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])

        response = data.get("response")
        if isinstance(response, dict) and response.get("message"):
            message = response["message"]
            if isinstance(message, list):
                return "; ".join(str(m) for m in message)
            return str(message)

        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return str(data["message"])

    return f"Provider returned HTTP {status_code}"


class EvolutionChannelProvider(ChannelProvider):
    """
    Evolution API provider.

    Each channel instance has its own provider object (identified by instance_name).
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        instance_name: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize Evolution API provider.

        Args:
            api_url: Base URL of Evolution API (e.g., "https://evolution-api.example.com")
            api_key: API key for authentication
            instance_name: Name of the Evolution instance
            timeout: HTTP request timeout
            transport: Optional httpx transport (tests)
        """
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.instance_name = instance_name
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                headers={
                    "Content-Type": "application/json",
                    "apikey": self.api_key,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated API request.

        Raises:
            ProviderUnreachableError: Timeout, connection refused, DNS failure
            ProviderRejectedError: Any non-success provider response
        """
        client = await self._get_client()
        url = f"{self.api_url}{endpoint}"

        try:
            if method.upper() == "GET":
                response = await client.get(url)
            else:
                response = await client.post(url, json=json_data)
        except httpx.RequestError as e:
            logger.error(
                f"HTTP request to provider failed: {e!r}",
                extra={"instance": self.instance_name, "endpoint": endpoint},
            )
            raise ProviderUnreachableError(f"HTTP request failed: {e!r}") from e

        try:
            response_data = response.json()
        except ValueError:
            response_data = None

        failed = response.status_code >= 400 or (
            isinstance(response_data, dict) and bool(response_data.get("error"))
        )
        if failed:
            message = extract_error_message(response_data, response.status_code)
            raise ProviderRejectedError(
                message,
                status_code=response.status_code,
                details=response_data if isinstance(response_data, dict) else {"body": response.text[:500]},
            )

        if not isinstance(response_data, dict):
            logger.warning(
                "Provider accepted request without a JSON object body",
                extra={"instance": self.instance_name, "endpoint": endpoint},
            )
            return {}

        return response_data

    @staticmethod
    def _message_id(response: dict[str, Any]) -> str | None:
        key = response.get("key")
        if isinstance(key, dict) and key.get("id"):
            return key["id"]
        return response.get("id")

    async def send_text(
        self,
        to: str,
        text: str,
        delay: int | None = None,
    ) -> ProviderResult:
        """Send a text message via Evolution API."""
        endpoint = f"/message/sendText/{self.instance_name}"

        payload: dict[str, Any] = {
            "number": to,
            "text": text,
            "options": {
                "delay": DEFAULT_TEXT_DELAY if delay is None else delay,
                "presence": "composing",
            },
        }

        response = await self._make_request("POST", endpoint, payload)
        message_id = self._message_id(response)

        logger.info(
            "Sent text message via Evolution API",
            extra={"to": to, "message_id": message_id, "instance": self.instance_name},
        )

        return ProviderResult(message_id=message_id, raw_response=response)

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
        """Send media via Evolution API (voice notes use the audio endpoint)."""
        options = {
            "delay": DEFAULT_MEDIA_DELAY if delay is None else delay,
            "presence": "recording" if media_kind == MediaKind.AUDIO else "composing",
        }

        if media_kind == MediaKind.AUDIO:
            endpoint = f"/message/sendWhatsAppAudio/{self.instance_name}"
            payload: dict[str, Any] = {
                "number": to,
                "audio": media_url,
                "options": options,
            }
        else:
            endpoint = f"/message/sendMedia/{self.instance_name}"
            payload = {
                "number": to,
                "media": media_url,
                "mediatype": media_kind.value,
                "caption": caption or "",
                "options": options,
            }
            if file_name:
                payload["fileName"] = file_name
            if mime_type:
                payload["mimetype"] = mime_type

        response = await self._make_request("POST", endpoint, payload)
        message_id = self._message_id(response)

        logger.info(
            "Sent media message via Evolution API",
            extra={
                "to": to,
                "kind": media_kind.value,
                "message_id": message_id,
                "instance": self.instance_name,
            },
        )

        return ProviderResult(message_id=message_id, raw_response=response)

    async def mark_as_read(self, remote_jid: str, message_id: str) -> None:
        """Mark a message as read."""
        endpoint = f"/chat/markMessageAsRead/{self.instance_name}"

        payload = {
            "readMessages": [
                {"remoteJid": remote_jid, "fromMe": False, "id": message_id},
            ],
        }

        await self._make_request("POST", endpoint, payload)

    def parse_webhook(self, payload: dict[str, Any]) -> list[InboundMessage]:
        """
        Parse Evolution API webhook payload.

        Evolution API webhook format:
        {
            "event": "messages.upsert",
            "instance": "instance_name",
            "data": {
                "key": {"id": "...", "remoteJid": "...", "fromMe": false},
                "pushName": "...",
                "message": {...},
                "messageType": "conversation",
                "messageTimestamp": 1234567890,
            }
        }
        """
        if payload.get("event") != "messages.upsert":
            return []

        data = payload.get("data")
        items = data if isinstance(data, list) else [data]
        instance_name = payload.get("instance") or self.instance_name

        messages: list[InboundMessage] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            msg = self._parse_message(instance_name, item)
            if msg:
                messages.append(msg)
        return messages

    def _parse_message(self, instance_name: str, data: dict[str, Any]) -> InboundMessage | None:
        """Parse a single message from Evolution webhook data."""
        key = data.get("key") or {}
        message_id = key.get("id")
        remote_jid = key.get("remoteJid") or ""
        if not message_id or not remote_jid:
            logger.debug("Skipping webhook message without id or remoteJid")
            return None

        message_data = data.get("message") or {}
        message_type_str = data.get("messageType", "conversation")
        msg_type = TYPE_MAPPING.get(message_type_str, InboundType.UNKNOWN)

        # Extract text
        text = None
        if msg_type == InboundType.TEXT:
            text = message_data.get("conversation") or (
                message_data.get("extendedTextMessage") or {}
            ).get("text")

        # Extract media info
        caption = None
        media_url = None
        mime_type = None
        if msg_type in (InboundType.IMAGE, InboundType.VIDEO, InboundType.AUDIO, InboundType.DOCUMENT):
            media_obj = message_data.get(message_type_str) or {}
            caption = media_obj.get("caption")
            media_url = media_obj.get("url")
            mime_type = media_obj.get("mimetype")

        # Parse timestamp
        timestamp = datetime.now(timezone.utc)
        if data.get("messageTimestamp"):
            try:
                timestamp = datetime.fromtimestamp(int(data["messageTimestamp"]), tz=timezone.utc)
            except (ValueError, TypeError, OverflowError):
                pass

        return InboundMessage(
            message_id=message_id,
            instance_name=instance_name,
            remote_jid=remote_jid,
            from_address=remote_jid.split("@", 1)[0],
            message_type=msg_type,
            timestamp=timestamp,
            from_me=bool(key.get("fromMe")),
            text=text,
            caption=caption,
            media_url=media_url,
            media_mime_type=mime_type,
            contact_name=data.get("pushName"),
            raw_payload=data,
        )
