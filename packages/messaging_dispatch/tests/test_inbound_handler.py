"""
Tests for inbound webhook handling.
"""

import pytest
from sqlalchemy.orm import sessionmaker

from messaging_dispatch.persistence import Message, MessageKind
from messaging_dispatch.service import InboundHandler


@pytest.fixture
def handler(db) -> InboundHandler:
    return InboundHandler(db)


def upsert(instance="loja-principal", message_id="IN1", remote_jid="5511999999999@s.whatsapp.net", **extra):
    data = {
        "key": {"id": message_id, "remoteJid": remote_jid, "fromMe": False},
        "pushName": "Maria",
        "message": {"conversation": "Tem horário amanhã?"},
        "messageType": "conversation",
        "messageTimestamp": 1772540000,
    }
    data.update(extra)
    return {"event": "messages.upsert", "instance": instance, "data": data}


class TestInboundHandler:
    """Tests for InboundHandler.handle_webhook."""

    def test_records_inbound_text(self, handler, db, seed):
        result = handler.handle_webhook(upsert())

        assert result == {"status": "processed", "recorded": 1, "skipped": 0}
        message = db.query(Message).one()
        assert message.direction == "inbound"
        assert message.conversation_id == seed.conversation.id
        assert message.content == "Tem horário amanhã?"
        assert message.external_id == "IN1"
        assert message.meta["push_name"] == "Maria"

    def test_records_inbound_media(self, handler, db, seed):
        payload = upsert(
            message={"imageMessage": {"url": "https://mmg.test/img", "mimetype": "image/jpeg", "caption": "Foto"}},
            messageType="imageMessage",
        )

        handler.handle_webhook(payload)

        message = db.query(Message).one()
        assert message.message_type == MessageKind.ATTACHMENT.value
        assert message.content == "Foto"
        assert message.attachment["url"] == "https://mmg.test/img"

    def test_duplicate_delivery_is_skipped(self, handler, db, seed):
        handler.handle_webhook(upsert())

        result = handler.handle_webhook(upsert())

        assert result["skipped"] == 1
        assert db.query(Message).count() == 1

    def test_concurrent_duplicate_delivery_is_skipped(self, handler, db, engine, seed, monkeypatch):
        """A retry recorded by another worker between the check and the insert is skipped."""
        other_session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
        other_results = []
        check = handler.repo.message_exists

        def racing_check(conversation_id, external_id):
            exists = check(conversation_id, external_id)
            other_results.append(InboundHandler(other_session).handle_webhook(upsert(message_id="DUP1")))
            return exists

        monkeypatch.setattr(handler.repo, "message_exists", racing_check)

        try:
            result = handler.handle_webhook(upsert(message_id="DUP1"))
        finally:
            other_session.close()

        assert other_results == [{"status": "processed", "recorded": 1, "skipped": 0}]
        assert result == {"status": "processed", "recorded": 0, "skipped": 1}
        assert db.query(Message).filter(Message.external_id == "DUP1").count() == 1

    def test_own_messages_are_skipped(self, handler, db, seed):
        payload = upsert()
        payload["data"]["key"]["fromMe"] = True

        result = handler.handle_webhook(payload)

        assert result["recorded"] == 0
        assert db.query(Message).count() == 0

    def test_unknown_instance(self, handler, seed):
        assert handler.handle_webhook(upsert(instance="nao-existe")) == {
            "status": "ignored",
            "reason": "unknown_instance",
        }

    def test_missing_instance(self, handler):
        assert handler.handle_webhook({"event": "messages.upsert"})["reason"] == "no_instance"

    def test_unknown_thread(self, handler, db, seed):
        result = handler.handle_webhook(upsert(remote_jid="5511000000000@s.whatsapp.net"))

        assert result == {"status": "processed", "recorded": 0, "skipped": 1}
        assert db.query(Message).count() == 0

    def test_stub_instance(self, handler, db, seed):
        result = handler.handle_webhook(
            {"instance": "sandbox", "from": "5511777777777", "text": "Oi", "message_id": "s1"}
        )

        assert result["recorded"] == 1
        assert db.query(Message).one().conversation_id == seed.stub_conversation.id
