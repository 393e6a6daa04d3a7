"""
Channel Provider Base

Abstract interface for external messaging providers.
Implementations: Evolution API (production), Stub (development/testing).

Providers raise ProviderUnreachableError for network-level failures and
ProviderRejectedError for any non-success provider response.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MediaKind(str, Enum):
    """Media categories the provider distinguishes."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"

    @classmethod
    def from_mime_type(cls, mime_type: str | None) -> "MediaKind":
        """Map a MIME type to a media kind (document by default)."""
        major = (mime_type or "").split("/", 1)[0].lower()
        if major == "image":
            return cls.IMAGE
        if major == "video":
            return cls.VIDEO
        if major == "audio":
            return cls.AUDIO
        return cls.DOCUMENT


class InboundType(str, Enum):
    """Types of inbound provider messages."""

    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACTS = "contacts"
    UNKNOWN = "unknown"


@dataclass
class ProviderResult:
    """
    Response from provider after a successful send.

    ``message_id`` is the provider-assigned id used for reconciliation.
    """

    message_id: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class InboundMessage:
    """
    Parsed inbound message from a provider webhook.

    Provider-agnostic representation of an incoming message.
    """

    message_id: str
    instance_name: str
    remote_jid: str
    from_address: str
    message_type: InboundType
    timestamp: datetime
    from_me: bool = False
    text: str | None = None
    caption: str | None = None
    media_url: str | None = None
    media_mime_type: str | None = None
    contact_name: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


class ChannelProvider(ABC):
    """
    Abstract interface for channel providers.

    A provider instance is bound to one endpoint (base URL, credential,
    instance name) and must be closed after use.
    """

    @abstractmethod
    async def send_text(
        self,
        to: str,
        text: str,
        delay: int | None = None,
    ) -> ProviderResult:
        """
        Send a text message.

        Args:
            to: Bare recipient address (e.g. "5511999999999")
            text: Message text
            delay: Typing delay in milliseconds (optional)

        Returns:
            ProviderResult with the provider message id
        """
        ...

    @abstractmethod
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
        """
        Send a media message referencing a fetchable URL.

        Args:
            to: Bare recipient address
            media_url: Public URL of the media
            media_kind: image, video, audio or document
            caption: Optional caption
            file_name: File name shown to the recipient (documents)
            mime_type: Declared MIME type
            delay: Typing delay in milliseconds (optional)

        Returns:
            ProviderResult with the provider message id
        """
        ...

    @abstractmethod
    async def mark_as_read(self, remote_jid: str, message_id: str) -> None:
        """
        Mark an inbound message as read.

        Args:
            remote_jid: Full provider thread address
            message_id: Provider id of the inbound message
        """
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> list[InboundMessage]:
        """
        Parse a webhook payload into inbound messages.

        Args:
            payload: Parsed JSON webhook payload

        Returns:
            Inbound messages found in the payload (may be empty)
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
