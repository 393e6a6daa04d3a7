"""
Dispatch CLI

Command-line interface for dispatch core administration.

Commands:
- init-db: Create the dispatch tables
- register-instance: Register a company's channel instance
- balance: Show a company's credit balance
- add-credits: Credit a company's account
- consume-credits: Debit a company's account
- transactions: List credit transactions
- usage-stats: Show usage for this month and the previous one
- send-test: Send a test message to a conversation
"""

import asyncio
from typing import Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from messaging_dispatch.errors import DispatchError

app = typer.Typer(
    name="dispatch-cli",
    help="Messaging Dispatch CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from crmcore.db import get_db as _get_db
    return next(_get_db())


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]Invalid {label}: {value}[/red]")
        raise typer.Exit(1)


def _fail(error: DispatchError) -> None:
    rprint(f"[red]{error.message}[/red]")
    rprint(f"  Code: {error.code}")
    raise typer.Exit(1)


@app.command()
def init_db():
    """
    Create the dispatch tables.
    """
    from crmcore.db import init_db as _init_db
    from messaging_dispatch.persistence import DispatchBase

    _init_db(DispatchBase.metadata)
    rprint("[green]Database tables created[/green]")


@app.command()
def register_instance(
    company_id: str = typer.Argument(..., help="Company UUID"),
    name: str = typer.Argument(..., help="Provider instance name"),
    provider: str = typer.Option("evolution", help="Provider (evolution or stub)"),
    api_url: Optional[str] = typer.Option(None, help="Evolution API base URL"),
    api_key: Optional[str] = typer.Option(None, help="Evolution API key (will be encrypted)"),
    phone_number: Optional[str] = typer.Option(None, help="Instance phone number"),
    connected: bool = typer.Option(True, help="Mark the instance as connected"),
):
    """
    Register a company's channel instance.

    The instance name routes inbound webhooks to the company.
    """
    company_uuid = _parse_uuid(company_id, "company ID")

    db = get_db()

    try:
        from crmcore.settings import get_settings
        from messaging_dispatch.persistence import ChannelInstance, DispatchRepository, InstanceStatus

        repo = DispatchRepository(db)

        existing = repo.get_instance_by_name(name)
        if existing:
            rprint(f"[yellow]Instance already exists: {name}[/yellow]")
            rprint(f"  Company: {existing.company_id}")
            rprint(f"  Status: {existing.status}")
            raise typer.Exit(1)

        stored_key = api_key
        encryption_key = get_settings().ENCRYPTION_KEY
        if api_key and encryption_key:
            from cryptography.fernet import Fernet
            f = Fernet(encryption_key.encode())
            stored_key = f.encrypt(api_key.encode()).decode()
        elif api_key:
            rprint("[yellow]Warning: ENCRYPTION_KEY not set, storing API key unencrypted[/yellow]")

        instance = ChannelInstance(
            company_id=company_uuid,
            name=name,
            provider=provider,
            phone_number=phone_number,
            status=(InstanceStatus.CONNECTED if connected else InstanceStatus.DISCONNECTED).value,
            api_url=api_url,
            api_key=stored_key,
        )
        db.add(instance)
        db.commit()

        rprint("[green]Successfully registered instance:[/green]")
        rprint(f"  ID: {instance.id}")
        rprint(f"  Company: {instance.company_id}")
        rprint(f"  Provider: {instance.provider}")
        rprint(f"  Status: {instance.status}")

    finally:
        db.close()


@app.command()
def balance(
    company_id: str = typer.Argument(..., help="Company UUID"),
):
    """
    Show a company's credit balance.
    """
    company_uuid = _parse_uuid(company_id, "company ID")

    db = get_db()

    try:
        from messaging_dispatch.service import CreditLedger

        account = CreditLedger(db).get_account(company_uuid)
        rprint(f"Balance: [bold]{account.balance}[/bold] credits")
        rprint(f"  Updated: {account.updated_at}")

    except DispatchError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def add_credits(
    company_id: str = typer.Argument(..., help="Company UUID"),
    amount: int = typer.Argument(..., help="Credits to add"),
    description: str = typer.Option(..., help="Reason for the deposit"),
    reference: Optional[str] = typer.Option(None, help="External reference (e.g. payment ID)"),
    type_: str = typer.Option("purchase", "--type", help="purchase, bonus or refund"),
):
    """
    Credit a company's account.
    """
    company_uuid = _parse_uuid(company_id, "company ID")

    db = get_db()

    try:
        from messaging_dispatch.service import CreditLedger

        new_balance = CreditLedger(db).add(
            company_uuid,
            amount,
            description,
            reference=reference,
            transaction_type=type_,
        )
        rprint(f"[green]Added {amount} credits[/green]")
        rprint(f"  New balance: {new_balance}")

    except DispatchError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def consume_credits(
    company_id: str = typer.Argument(..., help="Company UUID"),
    amount: int = typer.Argument(..., help="Credits to consume"),
    service_type: str = typer.Option(..., help="Billing category"),
    description: str = typer.Option(..., help="Reason for the charge"),
    feature: Optional[str] = typer.Option(None, help="Calling feature"),
):
    """
    Debit a company's account.
    """
    company_uuid = _parse_uuid(company_id, "company ID")

    db = get_db()

    try:
        from messaging_dispatch.service import CreditLedger

        new_balance = CreditLedger(db).consume(
            company_uuid,
            amount,
            service_type,
            description,
            context={"feature": feature or "CLI"},
        )
        rprint(f"[green]Consumed {amount} credits[/green]")
        rprint(f"  New balance: {new_balance}")

    except DispatchError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def transactions(
    company_id: str = typer.Argument(..., help="Company UUID"),
    limit: int = typer.Option(20, help="Maximum number of transactions to show"),
    offset: int = typer.Option(0, help="Rows to skip"),
    type_: Optional[str] = typer.Option(None, "--type", help="Filter by type (purchase, usage, bonus, refund)"),
):
    """
    List credit transactions, newest first.
    """
    company_uuid = _parse_uuid(company_id, "company ID")

    db = get_db()

    try:
        from messaging_dispatch.service import CreditLedger

        rows = CreditLedger(db).list_transactions(
            company_uuid,
            limit=limit,
            offset=offset,
            type_filter=type_,
        )

        if not rows:
            rprint("[yellow]No transactions found[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Transactions for company {company_id[:8]}...")
        table.add_column("When", style="dim")
        table.add_column("Type")
        table.add_column("Amount", justify="right")
        table.add_column("Balance", justify="right")
        table.add_column("Service")
        table.add_column("Description")

        for row in rows:
            table.add_row(
                row.created_at.strftime("%Y-%m-%d %H:%M") if row.created_at else "-",
                row.type,
                str(row.amount),
                str(row.balance_after),
                row.service_type or "-",
                row.description,
            )

        console.print(table)

    except DispatchError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def usage_stats(
    company_id: str = typer.Argument(..., help="Company UUID"),
):
    """
    Show credit usage for this month and the previous one.
    """
    company_uuid = _parse_uuid(company_id, "company ID")

    db = get_db()

    try:
        from messaging_dispatch.service import CreditLedger

        stats = CreditLedger(db).usage_stats(company_uuid)

        rprint(f"This month: [bold]{stats.total_this_period}[/bold] credits")
        rprint(f"Last month: {stats.total_prior_period} credits")
        rprint(f"Daily average: {stats.average_daily} credits")

        if stats.top_service_types:
            table = Table(title="Top services")
            table.add_column("Service")
            table.add_column("Credits", justify="right")
            table.add_column("Share", justify="right")
            for usage in stats.top_service_types:
                table.add_row(usage.service_type, str(usage.credits_used), f"{usage.percentage}%")
            console.print(table)

    except DispatchError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def send_test(
    company_id: str = typer.Argument(..., help="Company UUID"),
    conversation_id: str = typer.Argument(..., help="Conversation UUID"),
    text: str = typer.Option("Hello from Messaging Dispatch!", help="Message text"),
):
    """
    Send a test message to a conversation.

    Goes through the full flow: resolve, send, record and meter.
    """
    company_uuid = _parse_uuid(company_id, "company ID")
    conversation_uuid = _parse_uuid(conversation_id, "conversation ID")

    db = get_db()

    try:
        from messaging_dispatch.service import DispatchOrchestrator

        orchestrator = DispatchOrchestrator(db)
        result = asyncio.run(orchestrator.dispatch_text(conversation_uuid, company_uuid, text))

        rprint("[green]Message sent successfully![/green]")
        rprint(f"  Message ID: {result.message_id}")
        rprint(f"  Provider ID: {result.external_id}")
        if result.billed:
            rprint(f"  Credits charged: {result.credits_charged}")
        else:
            rprint("[yellow]Delivered but not billed[/yellow]")
            rprint(f"  Billing error: {result.billing_error}")

    except DispatchError as e:
        _fail(e)
    finally:
        db.close()


if __name__ == "__main__":
    app()
