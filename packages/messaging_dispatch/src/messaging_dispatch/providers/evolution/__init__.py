"""Evolution API channel provider."""

from messaging_dispatch.providers.evolution.client import EvolutionChannelProvider
from messaging_dispatch.providers.evolution.webhook import (
    extract_instance_name,
    is_message_webhook,
    validate_api_key,
)

__all__ = [
    "EvolutionChannelProvider",
    "extract_instance_name",
    "is_message_webhook",
    "validate_api_key",
]
