"""
Credit Repository

Persistence helpers for company_credits and credit_transactions.

Balance mutations are single conditional UPDATE ... RETURNING statements so the
check and the write happen inside the store in one step.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from messaging_dispatch.persistence.models import (
    CompanyCredits,
    CreditTransaction,
    TransactionType,
    utcnow,
)

_credits = CompanyCredits.__table__


class CreditRepository:
    """Repository for credit accounts and the transaction log."""

    def __init__(self, db: Session):
        self.db = db

    # --- Accounts ---

    def get_account(self, company_id: UUID) -> CompanyCredits | None:
        """Get the credit account, refreshed from the database."""
        return (
            self.db.query(CompanyCredits)
            .filter(CompanyCredits.company_id == company_id)
            .populate_existing()
            .first()
        )

    def get_balance(self, company_id: UUID) -> int | None:
        """Read the current balance without going through the identity map."""
        row = (
            self.db.query(CompanyCredits.balance)
            .filter(CompanyCredits.company_id == company_id)
            .first()
        )
        return row[0] if row else None

    def create_account(self, company_id: UUID, initial_balance: int = 0) -> CompanyCredits:
        """Insert a new account row and flush it."""
        now = utcnow()
        account = CompanyCredits(
            company_id=company_id,
            balance=initial_balance,
            last_sequence=0,
            credit_details={},
            created_at=now,
            updated_at=now,
        )
        self.db.add(account)
        self.db.flush()
        return account

    def debit_if_sufficient(self, company_id: UUID, amount: int) -> tuple[int, int] | None:
        """
        Debit iff balance >= amount.

        Returns:
            (new balance, sequence), or None when the account is missing or short of funds.
        """
        stmt = (
            update(_credits)
            .where(_credits.c.company_id == company_id, _credits.c.balance >= amount)
            .values(
                balance=_credits.c.balance - amount,
                last_sequence=_credits.c.last_sequence + 1,
                updated_at=utcnow(),
            )
            .returning(_credits.c.balance, _credits.c.last_sequence)
        )
        row = self.db.execute(stmt).first()
        return (row[0], row[1]) if row else None

    def credit(self, company_id: UUID, amount: int) -> tuple[int, int] | None:
        """
        Increment the balance.

        Returns:
            (new balance, sequence), or None when the account is missing.
        """
        stmt = (
            update(_credits)
            .where(_credits.c.company_id == company_id)
            .values(
                balance=_credits.c.balance + amount,
                last_sequence=_credits.c.last_sequence + 1,
                updated_at=utcnow(),
            )
            .returning(_credits.c.balance, _credits.c.last_sequence)
        )
        row = self.db.execute(stmt).first()
        return (row[0], row[1]) if row else None

    # --- Transactions ---

    def add_transaction(
        self,
        company_id: UUID,
        transaction_type: TransactionType,
        amount: int,
        balance_after: int,
        description: str,
        **context: Any,
    ) -> CreditTransaction:
        """Append a transaction row."""
        transaction = CreditTransaction(
            company_id=company_id,
            type=transaction_type.value,
            amount=amount,
            balance_after=balance_after,
            description=description,
            **context,
        )
        self.db.add(transaction)
        return transaction

    def list_transactions(
        self,
        company_id: UUID,
        limit: int = 50,
        offset: int = 0,
        transaction_type: TransactionType | None = None,
    ) -> list[CreditTransaction]:
        """List transactions, newest first (ties broken by sequence)."""
        query = self.db.query(CreditTransaction).filter(
            CreditTransaction.company_id == company_id
        )

        if transaction_type:
            query = query.filter(CreditTransaction.type == transaction_type.value)

        return (
            query.order_by(
                CreditTransaction.created_at.desc(),
                CreditTransaction.sequence.desc(),
                CreditTransaction.id.desc(),
            )
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_usage_rows(
        self,
        company_id: UUID,
        start: datetime,
        end: datetime,
    ) -> list[tuple[int, str | None]]:
        """Get (amount, service_type) of usage rows in [start, end), oldest first."""
        rows = (
            self.db.query(CreditTransaction.amount, CreditTransaction.service_type)
            .filter(
                CreditTransaction.company_id == company_id,
                CreditTransaction.type == TransactionType.USAGE.value,
                CreditTransaction.created_at >= start,
                CreditTransaction.created_at < end,
            )
            .order_by(CreditTransaction.created_at.asc())
            .all()
        )
        return [(row[0], row[1]) for row in rows]
