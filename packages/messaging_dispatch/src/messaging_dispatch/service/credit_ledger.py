"""
Credit Ledger

Per-company prepaid balance with an append-only transaction log.

Every balance mutation is one conditional UPDATE ... RETURNING issued by
CreditRepository, committed together with its transaction row. Two concurrent
consumes can never jointly overdraw an account.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from messaging_dispatch.errors import (
    DispatchError,
    InsufficientBalanceError,
    InternalError,
    InvalidArgumentError,
    LedgerConflictError,
)
from messaging_dispatch.persistence import (
    CompanyCredits,
    CreditRepository,
    CreditTransaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

CONSUME_CONTEXT_FIELDS = (
    "feature",
    "user_id",
    "tokens_used",
    "model_used",
    "request_id",
    "conversation_id",
)

DEPOSIT_TYPES = (TransactionType.PURCHASE, TransactionType.BONUS, TransactionType.REFUND)

TOP_SERVICE_LIMIT = 5


@dataclass
class ServiceUsage:
    """Summed usage of one service type within a period."""

    service_type: str
    credits_used: int
    percentage: float


@dataclass
class UsageStats:
    """Usage aggregates for the current and previous calendar month."""

    total_this_period: int
    total_prior_period: int
    average_daily: int
    top_service_types: list[ServiceUsage] = field(default_factory=list)
    current_period: tuple[datetime, datetime] | None = None
    prior_period: tuple[datetime, datetime] | None = None


def _round_half_up(value: Decimal, places: str) -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def month_windows(now: datetime) -> tuple[tuple[datetime, datetime], tuple[datetime, datetime]]:
    """
    Half-open windows for the current and previous calendar month.

    Returns:
        ((start_of_month, now), (start_of_prior_month, start_of_month))
    """
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_prior = (start_of_month - timedelta(days=1)).replace(day=1)
    return (start_of_month, now), (start_of_prior, start_of_month)


def summarize_usage(
    rows: list[tuple[int, str | None]],
    limit: int = TOP_SERVICE_LIMIT,
) -> tuple[int, list[ServiceUsage]]:
    """
    Total a period's usage rows and rank service types.

    Ranking is by summed credits descending; ties keep first-occurrence order.
    """
    totals: dict[str, int] = {}
    for amount, service_type in rows:
        key = service_type or "unknown"
        totals[key] = totals.get(key, 0) + amount

    total = sum(totals.values())
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)[:limit]

    top = []
    for service_type, credits_used in ranked:
        share = Decimal(0)
        if total > 0:
            share = _round_half_up(Decimal(credits_used) * 100 / Decimal(total), "0.1")
        top.append(ServiceUsage(service_type, credits_used, float(share)))
    return total, top


class CreditLedger:
    """
    Credit ledger bound to one database session.

    All writes commit before returning. Store failures roll the session back
    and surface as LedgerConflictError (lock/serialization failures, safe to
    retry with the same arguments) or InternalError.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = CreditRepository(db)

    @contextmanager
    def _store_errors(self, operation: str, company_id: UUID) -> Iterator[None]:
        try:
            yield
        except DispatchError:
            self.db.rollback()
            raise
        except OperationalError as e:
            self.db.rollback()
            logger.warning(
                f"Credit ledger {operation} lost a race",
                extra={"company_id": str(company_id), "error": str(e.orig)},
            )
            raise LedgerConflictError(
                f"Concurrent update on credit account during {operation}; retry"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(
                f"Credit ledger {operation} failed",
                extra={"company_id": str(company_id)},
            )
            raise InternalError(f"Credit ledger {operation} failed") from e

    def _ensure_account(self, company_id: UUID) -> None:
        """Create a zero-balance account on first access."""
        if self.repo.get_balance(company_id) is not None:
            return
        try:
            self.repo.create_account(company_id)
            self.db.commit()
            logger.info("Created credit account", extra={"company_id": str(company_id)})
        except IntegrityError:
            # Another request created it first
            self.db.rollback()

    @staticmethod
    def _validate_amount(amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidArgumentError(
                "amount must be a positive integer",
                details={"field": "amount"},
            )
        return amount

    @staticmethod
    def _require_text(value: Any, field_name: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgumentError(
                f"{field_name} is required",
                details={"field": field_name},
            )
        return value

    # =========================================================================
    # Reads
    # =========================================================================

    def get_balance(self, company_id: UUID) -> int:
        """Current balance; creates the account with balance 0 if missing."""
        with self._store_errors("get_balance", company_id):
            self._ensure_account(company_id)
            return self.repo.get_balance(company_id) or 0

    def get_account(self, company_id: UUID) -> CompanyCredits:
        """Full account row (balance, updated_at, credit_details)."""
        with self._store_errors("get_account", company_id):
            self._ensure_account(company_id)
            account = self.repo.get_account(company_id)
            if account is None:
                raise InternalError("Credit account vanished after initialization")
            return account

    def list_transactions(
        self,
        company_id: UUID,
        limit: int = 50,
        offset: int = 0,
        type_filter: str | None = None,
    ) -> list[CreditTransaction]:
        """
        Transactions newest first.

        type_filter narrows to one of purchase/usage/bonus/refund; any other
        value is ignored.
        """
        if limit <= 0 or offset < 0:
            raise InvalidArgumentError("limit must be positive and offset non-negative")

        transaction_type = None
        if type_filter in {t.value for t in TransactionType}:
            transaction_type = TransactionType(type_filter)

        with self._store_errors("list_transactions", company_id):
            return self.repo.list_transactions(
                company_id,
                limit=limit,
                offset=offset,
                transaction_type=transaction_type,
            )

    def usage_stats(self, company_id: UUID, now: datetime | None = None) -> UsageStats:
        """
        Usage for the current calendar month (up to now) and the previous one.

        average_daily divides this month's total by the current day of month.
        """
        now = now or datetime.now(timezone.utc)
        current, prior = month_windows(now)

        with self._store_errors("usage_stats", company_id):
            current_rows = self.repo.get_usage_rows(company_id, *current)
            prior_rows = self.repo.get_usage_rows(company_id, *prior)

        total_this, top = summarize_usage(current_rows)
        total_prior = sum(amount for amount, _ in prior_rows)
        average = int(_round_half_up(Decimal(total_this) / Decimal(now.day), "1"))

        return UsageStats(
            total_this_period=total_this,
            total_prior_period=total_prior,
            average_daily=average,
            top_service_types=top,
            current_period=current,
            prior_period=prior,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def consume(
        self,
        company_id: UUID,
        amount: int,
        service_type: str,
        description: str,
        context: dict[str, Any] | None = None,
    ) -> int:
        """
        Debit credits iff the balance covers them.

        Args:
            company_id: Owning company
            amount: Credits to debit (> 0)
            service_type: Billing category (e.g. "whatsapp_send")
            description: Human-readable reason
            context: Optional linkage (feature, user_id, tokens_used,
                model_used, request_id, conversation_id)

        Returns:
            New balance

        Raises:
            InvalidArgumentError: Bad amount/service_type/description/context
            InsufficientBalanceError: Balance below amount (nothing debited)
            LedgerConflictError: Lost a race; retry with the same arguments
        """
        self._validate_amount(amount)
        self._require_text(service_type, "service_type")
        self._require_text(description, "description")

        context = dict(context or {})
        unknown = set(context) - set(CONSUME_CONTEXT_FIELDS)
        if unknown:
            raise InvalidArgumentError(
                f"Unknown consume context fields: {', '.join(sorted(unknown))}"
            )
        for key in ("user_id", "conversation_id"):
            value = context.get(key)
            if value is not None and not isinstance(value, UUID):
                try:
                    context[key] = UUID(str(value))
                except ValueError as e:
                    raise InvalidArgumentError(f"{key} must be a UUID", details={"field": key}) from e
        if not context.get("request_id") and context.get("conversation_id"):
            context["request_id"] = str(context["conversation_id"])

        with self._store_errors("consume", company_id):
            self._ensure_account(company_id)

            debited = self.repo.debit_if_sufficient(company_id, amount)
            if debited is None:
                current = self.repo.get_balance(company_id) or 0
                raise InsufficientBalanceError(current_balance=current, required=amount)
            new_balance, sequence = debited

            self.repo.add_transaction(
                company_id,
                TransactionType.USAGE,
                amount,
                new_balance,
                description,
                sequence=sequence,
                service_type=service_type,
                **context,
            )
            self.db.commit()

        logger.info(
            "Credits consumed",
            extra={
                "company_id": str(company_id),
                "amount": amount,
                "service_type": service_type,
                "new_balance": new_balance,
            },
        )
        return new_balance

    def add(
        self,
        company_id: UUID,
        amount: int,
        description: str,
        reference: str | None = None,
        transaction_type: TransactionType | str = TransactionType.PURCHASE,
        user_id: UUID | None = None,
    ) -> int:
        """
        Credit the account and append a purchase/bonus/refund row.

        Returns:
            New balance
        """
        self._validate_amount(amount)
        self._require_text(description, "description")

        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            transaction_type = None
        if transaction_type not in DEPOSIT_TYPES:
            raise InvalidArgumentError(
                "transaction type must be purchase, bonus or refund",
                details={"field": "type"},
            )

        with self._store_errors("add", company_id):
            self._ensure_account(company_id)

            credited = self.repo.credit(company_id, amount)
            if credited is None:
                raise InternalError("Credit account vanished after initialization")
            new_balance, sequence = credited

            self.repo.add_transaction(
                company_id,
                transaction_type,
                amount,
                new_balance,
                description,
                sequence=sequence,
                reference=reference,
                user_id=user_id,
            )
            self.db.commit()

        logger.info(
            "Credits added",
            extra={
                "company_id": str(company_id),
                "amount": amount,
                "type": transaction_type.value,
                "new_balance": new_balance,
            },
        )
        return new_balance
