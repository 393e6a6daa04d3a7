"""
Tests for the dispatch CLI.
"""

from uuid import UUID

import pytest
from cryptography.fernet import Fernet
from typer.testing import CliRunner

from messaging_dispatch.cli import main as cli
from messaging_dispatch.persistence import ChannelInstance, Message
from messaging_dispatch.service import CreditLedger

runner = CliRunner()

COMPANY = "12345678-1234-1234-1234-123456789012"
COMPANY_ID = UUID(COMPANY)


@pytest.fixture(autouse=True)
def cli_env(db, settings, monkeypatch):
    """Point the CLI at the test session and test settings."""
    monkeypatch.setattr(cli, "get_db", lambda: db)
    monkeypatch.setattr("crmcore.settings.get_settings", lambda: settings)
    monkeypatch.setattr("messaging_dispatch.service.orchestrator.get_settings", lambda: settings)


class TestCreditCommands:
    """Tests for balance and ledger commands."""

    def test_add_credits_and_balance(self):
        result = runner.invoke(cli.app, ["add-credits", COMPANY, "25", "--description", "Pacote"])

        assert result.exit_code == 0
        assert "New balance: 25" in result.output

        result = runner.invoke(cli.app, ["balance", COMPANY])

        assert result.exit_code == 0
        assert "Balance: 25 credits" in result.output

    def test_add_credits_bad_type(self):
        result = runner.invoke(
            cli.app, ["add-credits", COMPANY, "5", "--description", "Presente", "--type", "usage"]
        )

        assert result.exit_code == 1
        assert "invalid_argument" in result.output

    def test_consume_insufficient(self):
        result = runner.invoke(
            cli.app,
            ["consume-credits", COMPANY, "5", "--service-type", "manual", "--description", "Teste"],
        )

        assert result.exit_code == 1
        assert "insufficient_balance" in result.output

    def test_consume(self, db):
        CreditLedger(db).add(COMPANY_ID, 10, "Pacote")

        result = runner.invoke(
            cli.app,
            ["consume-credits", COMPANY, "4", "--service-type", "manual", "--description", "Teste"],
        )

        assert result.exit_code == 0
        assert "New balance: 6" in result.output

    def test_transactions(self, db):
        ledger = CreditLedger(db)
        ledger.add(COMPANY_ID, 10, "Pacote")
        ledger.consume(COMPANY_ID, 3, "manual", "Teste")

        result = runner.invoke(cli.app, ["transactions", COMPANY, "--type", "usage"])

        assert result.exit_code == 0
        assert "manual" in result.output
        assert "purchase" not in result.output

    def test_no_transactions(self):
        result = runner.invoke(cli.app, ["transactions", COMPANY])

        assert result.exit_code == 0
        assert "No transactions found" in result.output

    def test_usage_stats(self, db):
        ledger = CreditLedger(db)
        ledger.add(COMPANY_ID, 10, "Pacote")
        ledger.consume(COMPANY_ID, 3, "manual", "Teste")

        result = runner.invoke(cli.app, ["usage-stats", COMPANY])

        assert result.exit_code == 0
        assert "This month: 3 credits" in result.output

    def test_invalid_company_id(self):
        result = runner.invoke(cli.app, ["balance", "not-a-uuid"])

        assert result.exit_code == 1
        assert "Invalid company ID" in result.output


class TestInstanceCommands:
    """Tests for register-instance."""

    def test_register_instance_encrypts_key(self, db, settings):
        key = Fernet.generate_key().decode()
        settings.ENCRYPTION_KEY = key

        result = runner.invoke(
            cli.app,
            ["register-instance", COMPANY, "loja-nova", "--api-url", "https://evo.test", "--api-key", "k-123"],
        )

        assert result.exit_code == 0
        instance = db.query(ChannelInstance).filter(ChannelInstance.name == "loja-nova").one()
        assert instance.api_key != "k-123"
        assert Fernet(key.encode()).decrypt(instance.api_key.encode()) == b"k-123"

    def test_register_duplicate_name(self, seed):
        result = runner.invoke(cli.app, ["register-instance", COMPANY, "loja-principal"])

        assert result.exit_code == 1
        assert "already exists" in result.output


class TestSendTest:
    """Tests for send-test."""

    def test_send_without_credits(self, db, seed):
        result = runner.invoke(
            cli.app,
            ["send-test", COMPANY, str(seed.stub_conversation.id), "--text", "Teste"],
        )

        assert result.exit_code == 0
        assert "Message sent successfully!" in result.output
        assert "Delivered but not billed" in result.output
        assert db.query(Message).count() == 1

    def test_send_to_disconnected_instance(self, seed):
        result = runner.invoke(cli.app, ["send-test", COMPANY, str(seed.offline_conversation.id)])

        assert result.exit_code == 1
        assert "endpoint_unavailable" in result.output
