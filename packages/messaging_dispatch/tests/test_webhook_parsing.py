"""
Tests for webhook parsing and webhook helpers.
"""

import pytest

from messaging_dispatch.providers.base import InboundType
from messaging_dispatch.providers.evolution import (
    EvolutionChannelProvider,
    extract_instance_name,
    is_message_webhook,
    validate_api_key,
)
from messaging_dispatch.providers.stub import StubChannelProvider


@pytest.fixture
def provider():
    return EvolutionChannelProvider(
        api_url="https://evo.test",
        api_key="test-key",
        instance_name="test_instance",
    )


@pytest.fixture
def evolution_text_message_webhook():
    """Sample Evolution API webhook for a text message."""
    return {
        "event": "messages.upsert",
        "instance": "test_instance",
        "data": {
            "key": {
                "id": "msg_123",
                "remoteJid": "5511888888888@s.whatsapp.net",
                "fromMe": False,
            },
            "pushName": "João",
            "message": {
                "conversation": "Quero um orçamento",
            },
            "messageType": "conversation",
            "messageTimestamp": 1704067200,
        },
    }


@pytest.fixture
def evolution_image_webhook():
    """Sample Evolution API webhook for an image with caption."""
    return {
        "event": "messages.upsert",
        "instance": "test_instance",
        "data": {
            "key": {"id": "msg_img", "remoteJid": "5511888888888@s.whatsapp.net"},
            "message": {
                "imageMessage": {
                    "url": "https://mmg.whatsapp.net/img",
                    "mimetype": "image/jpeg",
                    "caption": "Planta baixa",
                },
            },
            "messageType": "imageMessage",
            "messageTimestamp": "1704067200",
        },
    }


class TestEvolutionWebhookHelpers:
    """Tests for Evolution API webhook utilities."""

    def test_extract_instance_name(self, evolution_text_message_webhook):
        assert extract_instance_name(evolution_text_message_webhook) == "test_instance"

    def test_extract_instance_name_missing(self):
        assert extract_instance_name({}) is None

    def test_is_message_webhook(self, evolution_text_message_webhook):
        assert is_message_webhook(evolution_text_message_webhook) is True
        assert is_message_webhook({"event": "connection.update"}) is False

    def test_validate_api_key(self):
        headers = {"apikey": "test-key"}
        assert validate_api_key(headers, "test-key") is True
        assert validate_api_key(headers, "wrong-key") is False

    def test_validate_api_key_bearer(self):
        headers = {"Authorization": "Bearer test-key"}
        assert validate_api_key(headers, "test-key") is True
        assert validate_api_key({}, "test-key") is False


class TestEvolutionParsing:
    """Tests for EvolutionChannelProvider.parse_webhook."""

    def test_parse_text_message(self, provider, evolution_text_message_webhook):
        messages = provider.parse_webhook(evolution_text_message_webhook)

        assert len(messages) == 1
        msg = messages[0]
        assert msg.message_id == "msg_123"
        assert msg.instance_name == "test_instance"
        assert msg.remote_jid == "5511888888888@s.whatsapp.net"
        assert msg.from_address == "5511888888888"
        assert msg.message_type == InboundType.TEXT
        assert msg.text == "Quero um orçamento"
        assert msg.contact_name == "João"
        assert msg.from_me is False
        assert msg.timestamp.year == 2024

    def test_parse_extended_text(self, provider, evolution_text_message_webhook):
        data = evolution_text_message_webhook["data"]
        data["message"] = {"extendedTextMessage": {"text": "Link: https://x.test"}}
        data["messageType"] = "extendedTextMessage"

        messages = provider.parse_webhook(evolution_text_message_webhook)

        assert messages[0].text == "Link: https://x.test"

    def test_parse_image(self, provider, evolution_image_webhook):
        messages = provider.parse_webhook(evolution_image_webhook)

        msg = messages[0]
        assert msg.message_type == InboundType.IMAGE
        assert msg.caption == "Planta baixa"
        assert msg.media_url == "https://mmg.whatsapp.net/img"
        assert msg.media_mime_type == "image/jpeg"

    def test_parse_from_me_flag(self, provider, evolution_text_message_webhook):
        evolution_text_message_webhook["data"]["key"]["fromMe"] = True

        messages = provider.parse_webhook(evolution_text_message_webhook)

        assert messages[0].from_me is True

    def test_parse_list_payload(self, provider, evolution_text_message_webhook):
        first = evolution_text_message_webhook["data"]
        second = {**first, "key": {**first["key"], "id": "msg_456"}}
        evolution_text_message_webhook["data"] = [first, second]

        messages = provider.parse_webhook(evolution_text_message_webhook)

        assert [m.message_id for m in messages] == ["msg_123", "msg_456"]

    def test_parse_unknown_event(self, provider):
        assert provider.parse_webhook({"event": "messages.update", "data": {}}) == []

    def test_parse_skips_message_without_id(self, provider, evolution_text_message_webhook):
        del evolution_text_message_webhook["data"]["key"]["id"]

        assert provider.parse_webhook(evolution_text_message_webhook) == []


class TestStubParsing:
    """Tests for the stub provider's simplified webhook format."""

    def test_parse_simple_format(self):
        provider = StubChannelProvider(instance_name="sandbox")

        messages = provider.parse_webhook({"from": "5511888888888", "text": "Oi", "message_id": "s1"})

        assert len(messages) == 1
        assert messages[0].remote_jid == "5511888888888@s.whatsapp.net"
        assert messages[0].instance_name == "sandbox"

    def test_parse_other_format(self):
        assert StubChannelProvider().parse_webhook({"event": "messages.upsert"}) == []
