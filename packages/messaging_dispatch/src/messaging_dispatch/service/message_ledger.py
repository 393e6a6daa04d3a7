"""
Message Ledger

Append-only record of every outbound attempt and inbound event.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from messaging_dispatch.errors import (
    DuplicateMessageError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
)
from messaging_dispatch.persistence import (
    DispatchRepository,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
)
from messaging_dispatch.persistence.models import utcnow

logger = logging.getLogger(__name__)


class MessageLedger:
    """Records messages and bumps conversation activity."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = DispatchRepository(db)

    def record(
        self,
        conversation_id: UUID,
        company_id: UUID,
        direction: MessageDirection,
        message_type: MessageKind,
        content: str | None = None,
        attachment: dict[str, Any] | None = None,
        is_automated: bool = False,
        external_id: str | None = None,
        status: MessageStatus = MessageStatus.PENDING,
        error_code: str | None = None,
        error_message: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Message:
        """
        Insert a new message row (failed attempts included).

        The conversation's last_message_at bump afterwards is best-effort.

        Raises:
            NotFoundError: Conversation not in this company
            DuplicateMessageError: external_id already recorded for the conversation
            InternalError: Insert failed
        """
        if self.repo.get_conversation(conversation_id, company_id) is None:
            raise NotFoundError("Conversation not found or not accessible")

        try:
            message = self.repo.create_message(
                company_id=company_id,
                conversation_id=conversation_id,
                direction=direction,
                message_type=message_type.value,
                content=content,
                attachment=attachment,
                sent_by_ai=is_automated,
                external_id=external_id,
                status=status,
                error_code=error_code,
                error_message=error_message,
                meta=meta,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateMessageError(
                "Message already recorded",
                details={"conversation_id": str(conversation_id), "external_id": external_id},
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(
                "Failed to record message",
                extra={"conversation_id": str(conversation_id), "status": status.value},
            )
            raise InternalError("Failed to record message") from e

        self._touch_conversation(conversation_id, company_id)

        logger.info(
            "Message recorded",
            extra={
                "message_id": str(message.id),
                "conversation_id": str(conversation_id),
                "direction": direction.value,
                "status": status.value,
            },
        )
        return message

    def _touch_conversation(self, conversation_id: UUID, company_id: UUID) -> None:
        try:
            self.repo.touch_conversation(conversation_id, company_id, utcnow())
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Failed to bump conversation activity: {e}",
                extra={"conversation_id": str(conversation_id)},
            )

    def transition_status(
        self,
        message_id: UUID,
        company_id: UUID,
        status: MessageStatus,
        external_id: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> Message:
        """
        Move a pending message to sent or failed.

        Raises:
            NotFoundError: Message not in this company
            InvalidArgumentError: Message not pending, or target not sent/failed
        """
        if status not in (MessageStatus.SENT, MessageStatus.FAILED):
            raise InvalidArgumentError(f"Cannot transition to {status.value}")

        message = self.repo.get_message(message_id, company_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.status != MessageStatus.PENDING.value:
            raise InvalidArgumentError(
                f"Message is {message.status}; only pending messages can transition"
            )

        now = utcnow()
        try:
            message.status = status.value
            message.status_updated_at = now
            if external_id:
                message.external_id = external_id
            if status == MessageStatus.SENT:
                message.sent_at = now
            else:
                message.error_code = error_code
                message.error_message = error_message
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise InternalError("Failed to update message status") from e

        return message

    def recent_messages(
        self,
        conversation_id: UUID,
        company_id: UUID,
        limit: int = 20,
    ) -> list[Message]:
        """The latest messages of a conversation in chronological order."""
        messages = self.repo.get_recent_messages(conversation_id, company_id, limit)
        return list(reversed(messages))
