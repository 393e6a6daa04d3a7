"""
Outbound Dispatcher

Sends a text or attachment payload through the provider of a resolved
endpoint and returns the provider's message id.

Provider failures surface as ProviderUnreachableError (network level,
retry-eligible) or ProviderRejectedError (terminal).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from crmcore.settings import Settings, get_settings
from messaging_dispatch.errors import EndpointUnavailableError, InvalidArgumentError
from messaging_dispatch.providers.base import ChannelProvider, MediaKind, ProviderResult
from messaging_dispatch.providers.evolution import EvolutionChannelProvider
from messaging_dispatch.providers.stub import StubChannelProvider
from messaging_dispatch.routing import ResolvedEndpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextPayload:
    body: str


@dataclass(frozen=True)
class AttachmentPayload:
    reference: str
    caption: str | None = None
    file_name: str | None = None
    mime_type: str | None = None


Payload = TextPayload | AttachmentPayload

ProviderFactory = Callable[[ResolvedEndpoint], ChannelProvider]


def validate_payload(payload: Payload) -> None:
    """Reject empty payloads before anything touches the network or the store."""
    if isinstance(payload, TextPayload):
        if not payload.body or not payload.body.strip():
            raise InvalidArgumentError("Message text is required", details={"field": "text"})
    elif isinstance(payload, AttachmentPayload):
        if not payload.reference:
            raise InvalidArgumentError("Attachment reference is required", details={"field": "reference"})
    else:
        raise InvalidArgumentError(f"Unsupported payload: {type(payload).__name__}")


def get_provider_for_endpoint(
    endpoint: ResolvedEndpoint,
    settings: Settings | None = None,
) -> ChannelProvider:
    """
    Get the provider for an endpoint's configured provider name.

    Args:
        endpoint: Resolved endpoint (base URL and credential already decrypted)
        settings: Settings for the HTTP timeout

    Returns:
        Provider instance bound to this endpoint; caller must close() it
    """
    settings = settings or get_settings()

    if endpoint.provider == "evolution":
        return EvolutionChannelProvider(
            api_url=endpoint.base_url,
            api_key=endpoint.credential,
            instance_name=endpoint.instance_name,
            timeout=settings.PROVIDER_TIMEOUT,
        )

    if endpoint.provider == "stub":
        return StubChannelProvider(instance_name=endpoint.instance_name)

    raise EndpointUnavailableError(f"Unsupported provider: {endpoint.provider}")


class OutboundDispatcher:
    """Sends payloads to resolved endpoints."""

    def __init__(
        self,
        provider_factory: ProviderFactory | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory or (
            lambda endpoint: get_provider_for_endpoint(endpoint, self.settings)
        )

    async def send(self, endpoint: ResolvedEndpoint, payload: Payload) -> ProviderResult:
        """
        Send a payload.

        Returns:
            ProviderResult; message_id may be None if the provider omitted it
        """
        validate_payload(payload)
        provider = self.provider_factory(endpoint)

        try:
            if isinstance(payload, TextPayload):
                result = await provider.send_text(endpoint.address, payload.body)
            else:
                result = await provider.send_media(
                    endpoint.address,
                    media_url=payload.reference,
                    media_kind=MediaKind.from_mime_type(payload.mime_type),
                    caption=payload.caption,
                    file_name=payload.file_name,
                    mime_type=payload.mime_type,
                )
        finally:
            await provider.close()

        if result.message_id is None:
            logger.warning(
                "Provider accepted message without an id",
                extra={"instance": endpoint.instance_name, "conversation_id": str(endpoint.conversation_id)},
            )

        return result

    async def mark_read(self, endpoint: ResolvedEndpoint, message_id: str) -> None:
        """Mark an inbound message of the endpoint's thread as read."""
        provider = self.provider_factory(endpoint)
        try:
            await provider.mark_as_read(endpoint.remote_jid, message_id)
        finally:
            await provider.close()
