"""
Channel Providers

Provider implementations for outbound messaging.
Supports Evolution API (production) and Stub (development).
"""

from messaging_dispatch.providers.base import (
    ChannelProvider,
    InboundMessage,
    InboundType,
    MediaKind,
    ProviderResult,
)

__all__ = [
    "ChannelProvider",
    "InboundMessage",
    "InboundType",
    "MediaKind",
    "ProviderResult",
]
