"""
Channel Endpoint Resolver

Resolves a conversation to a live provider endpoint: the address to send to,
the provider base URL and the (decrypted) provider credential.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from crmcore.settings import Settings, get_settings
from messaging_dispatch.errors import EndpointUnavailableError, NotFoundError
from messaging_dispatch.persistence.models import InstanceStatus
from messaging_dispatch.persistence.repo import DispatchRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Everything the dispatcher needs to reach one conversation."""

    conversation_id: UUID
    company_id: UUID
    contact_id: UUID | None
    contact_name: str | None
    instance_id: UUID
    instance_name: str
    provider: str
    remote_jid: str
    address: str
    base_url: str
    credential: str = ""

    def __repr__(self) -> str:
        # Keep the credential out of logs and tracebacks
        return (
            f"ResolvedEndpoint(conversation_id={self.conversation_id}, "
            f"instance={self.instance_name!r}, address={self.address!r})"
        )


def extract_address(external_id: str | None) -> str:
    """
    Strip provider decoration from a thread identifier.

    "5511999999999@s.whatsapp.net" -> "5511999999999"
    "5511999999999:12@s.whatsapp.net" -> "5511999999999"
    """
    if not external_id:
        return ""
    local = external_id.split("@", 1)[0]
    return local.split(":", 1)[0].strip()


class EndpointResolver:
    """
    Resolves conversations to provider endpoints.

    Reads only; never mutates the store.
    """

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = DispatchRepository(db)
        self.settings = settings or get_settings()

    def resolve(self, conversation_id: UUID, company_id: UUID) -> ResolvedEndpoint:
        """
        Resolve a conversation for sending.

        Raises:
            NotFoundError: Conversation missing or owned by another company
            EndpointUnavailableError: Instance not connected or not configured
        """
        bundle = self.repo.get_conversation_bundle(conversation_id, company_id)
        if bundle is None:
            logger.info(
                "Conversation not found for company",
                extra={"conversation_id": str(conversation_id), "company_id": str(company_id)},
            )
            raise NotFoundError("Conversation not found or not accessible")

        conversation, instance, contact = bundle

        if instance.status != InstanceStatus.CONNECTED.value:
            logger.warning(
                "Channel instance not connected",
                extra={"instance": instance.name, "status": instance.status},
            )
            raise EndpointUnavailableError(
                f"Channel instance {instance.name} is {instance.status}",
                instance_status=instance.status,
            )

        address = extract_address(conversation.external_id)
        if not address:
            raise EndpointUnavailableError(
                "Conversation has no provider address",
                instance_status=instance.status,
            )

        base_url = instance.api_url or self.settings.EVOLUTION_API_URL
        credential = self._get_credential(instance.api_key) or self.settings.EVOLUTION_API_KEY

        if instance.provider != "stub" and (not base_url or not credential):
            logger.warning(
                "Channel instance missing configuration",
                extra={"instance": instance.name, "api_url": bool(base_url), "api_key": bool(credential)},
            )
            raise EndpointUnavailableError(
                f"Channel instance {instance.name} is not configured",
                instance_status=instance.status,
            )

        return ResolvedEndpoint(
            conversation_id=conversation.id,
            company_id=conversation.company_id,
            contact_id=contact.id if contact else None,
            contact_name=contact.display_name if contact else None,
            instance_id=instance.id,
            instance_name=instance.name,
            provider=instance.provider,
            remote_jid=conversation.external_id,
            address=address,
            base_url=(base_url or "").rstrip("/"),
            credential=credential or "",
        )

    def _get_credential(self, stored: str | None) -> str | None:
        """
        Get the decrypted provider credential.

        Returns the stored value as-is when no ENCRYPTION_KEY is configured.
        """
        if not stored:
            return None

        if not self.settings.ENCRYPTION_KEY:
            return stored

        try:
            f = Fernet(self.settings.ENCRYPTION_KEY.encode())
            return f.decrypt(stored.encode()).decode()
        except (InvalidToken, ValueError) as e:
            logger.error(f"Failed to decrypt channel credential: {e!r}")
            raise EndpointUnavailableError("Channel credential could not be decrypted") from e
