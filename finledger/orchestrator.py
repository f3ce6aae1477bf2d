"""
Main Orchestrator for Finledger

This module ties together all the components and defines the
caller-facing flows for:
1. Transactions (record → post; delete → reverse → remove)
2. Recurring rules (create, run due, run now, pause/resume, delete)
3. Automated postings (daily interest, card billing, deposit maturity;
   loan repayments)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No transaction is stored without its ledger postings
- No transaction is deleted before its postings are reversed
- Every step is audited

The UI, CLI or scheduled job runner calls these flows; none of them
touch the record store directly.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Optional, TypeVar, Union
from uuid import UUID

import pydantic
import structlog

from finledger.audit import AuditLogger, configure_logging, create_correlation_id
from finledger.config import get_settings
from finledger.exceptions import ValidationError
from finledger.financial import FinancialService
from finledger.ledger import LedgerEngine
from finledger.models.ledger import (
    Account,
    AccountType,
    FinancialReport,
    Frequency,
    LoanRepayment,
    ProcessingReport,
    RecurringRule,
    Transaction,
    TransactionType,
)
from finledger.models.validation import ValidationIssue
from finledger.recurring import RecurringScheduler
from finledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    NotFoundError,
    RecordStoreInterface,
)
from finledger.validation import TransactionValidator


ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

logger = structlog.get_logger()


def build_record(model: type[ModelT], subject: str, **fields: Any) -> ModelT:
    """Construct a model, reporting schema errors as a ValidationError."""
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in err["loc"]) or subject,
                issue_type=err["type"],
                message=err["msg"],
            )
            for err in e.errors()
        ]
        raise ValidationError.from_issues(subject, issues) from e


class TransactionFlow:
    """
    Orchestrates recording and deleting transactions.

    Record:  validate → insert → post ledger entries
    Delete:  reverse ledger entries → delete record
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        engine: Optional[LedgerEngine] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._validator = validator or TransactionValidator()
        self._engine = engine or LedgerEngine(store, audit_logger, self._validator)
        self._audit_logger = audit_logger

    @property
    def engine(self) -> LedgerEngine:
        return self._engine

    async def create_account(
        self,
        name: str,
        opening_balance: Decimal = Decimal("0"),
        currency: Optional[str] = None,
        account_type: Union[AccountType, str] = AccountType.BANK,
        **details: Any,
    ) -> Account:
        """
        Create an account with its opening balance.

        `details` sets the optional interest, card, loan and fixed deposit
        fields (interest_rate, billing_day, loan_outstanding, ...).
        """
        account = build_record(
            Account,
            "account",
            name=name,
            balance=opening_balance,
            currency=currency or get_settings().ledger.default_currency,
            type=account_type,
            **details,
        )
        await self._store.insert_account(account)
        return account

    async def record_transaction(
        self,
        type: Union[TransactionType, str],
        amount: Decimal,
        account_id: str,
        date: dt.date,
        category_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[list[str]] = None,
        friend_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a transaction and post it to the ledger.

        If posting fails, the stored transaction is removed again.

        Raises:
            ValidationError: Bad input; nothing is stored
            NotFoundError: Referenced account missing; nothing is kept
            StorageError: Store failure; nothing is kept
        """
        correlation_id = correlation_id or create_correlation_id()

        transaction = build_record(
            Transaction,
            "transaction",
            type=type,
            amount=amount,
            account_id=account_id,
            to_account_id=to_account_id or None,
            category_id=category_id or None,
            date=date,
            notes=notes,
            tags=tags or [],
            friend_id=friend_id,
        )
        result = self._validator.ensure_valid_transaction(transaction)
        if result.warnings:
            logger.info(
                "transaction_validation_warnings",
                transaction_id=transaction.id,
                warnings=result.warnings,
            )

        # Only transfers keep a destination; only income and expense keep a category
        if transaction.type == TransactionType.TRANSFER:
            transaction = transaction.model_copy(update={"category_id": None})
        else:
            transaction = transaction.model_copy(update={"to_account_id": None})

        await self._store.insert_transaction(transaction)
        if self._audit_logger:
            await self._audit_logger.log_transaction_recorded(
                transaction_id=transaction.id,
                transaction_type=transaction.type.value,
                amount=transaction.amount,
                correlation_id=correlation_id,
            )

        try:
            await self._engine.create_entries(transaction, correlation_id)
        except Exception as e:
            await self._store.delete_transaction(transaction.id)
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=e.__class__.__name__,
                    error_message=str(e),
                    details={"transaction_id": transaction.id},
                    correlation_id=correlation_id,
                )
            raise

        return transaction

    async def delete_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Reverse a transaction's postings, then delete it.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()

        transaction = await self._store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        await self._engine.reverse_entries(transaction, correlation_id)
        deleted = await self._store.delete_transaction(transaction_id)

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )
        return deleted


class RecurringFlow:
    """
    Orchestrates recurring rules.

    run_due is what the app calls on startup or from a scheduled job;
    run_now backs a manual "run now" action.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        scheduler: RecurringScheduler,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._scheduler = scheduler
        self._audit_logger = audit_logger

    @property
    def scheduler(self) -> RecurringScheduler:
        return self._scheduler

    async def create_rule(
        self,
        name: str,
        type: Union[TransactionType, str],
        amount: Decimal,
        account_id: str,
        start_date: dt.date,
        frequency: Union[Frequency, str] = Frequency.MONTHLY,
        category_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        end_date: Optional[dt.date] = None,
        notes: Optional[str] = None,
        tags: Optional[list[str]] = None,
        friend_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        """Create an active rule, first due on its start date."""
        rule = build_record(
            RecurringRule,
            "recurring rule",
            name=name,
            type=type,
            amount=amount,
            account_id=account_id,
            to_account_id=to_account_id or None,
            category_id=category_id or None,
            frequency=frequency,
            start_date=start_date,
            end_date=end_date,
            notes=notes,
            tags=tags,
            friend_id=friend_id,
        )
        return await self._scheduler.create_rule(rule, correlation_id)

    async def run_due(
        self,
        as_of: Optional[dt.date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ProcessingReport:
        """Materialize every due rule once."""
        return await self._scheduler.process_due(as_of, correlation_id)

    async def run_now(
        self,
        rule_id: str,
        on_date: Optional[dt.date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Materialize one rule immediately."""
        rule = await self._store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        return await self._scheduler.process_single(rule, on_date, correlation_id)

    async def pause(self, rule_id: str) -> RecurringRule:
        return await self._scheduler.pause_rule(rule_id)

    async def resume(self, rule_id: str) -> RecurringRule:
        return await self._scheduler.resume_rule(rule_id)

    async def delete_rule(
        self,
        rule_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a rule. Transactions it already generated are kept;
        their recurring_id is a non-owning back reference.
        """
        deleted = await self._store.delete_rule(rule_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_rule_deleted(
                rule_id=rule_id,
                correlation_id=correlation_id,
            )
        return deleted

    async def history(self, rule_id: str) -> list[Transaction]:
        """Transactions generated by a rule."""
        return await self._scheduler.get_transactions_from_rule(rule_id)


class FinancialFlow:
    """
    Orchestrates automated account postings.

    run_daily is called once a day next to RecurringFlow.run_due;
    repay_loan backs a manual "pay installment" action.
    """

    def __init__(self, service: FinancialService):
        self._service = service

    @property
    def service(self) -> FinancialService:
        return self._service

    async def run_daily(
        self,
        as_of: Optional[dt.date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> FinancialReport:
        """Post due interest, card charges and deposit maturities."""
        return await self._service.run_daily(as_of, correlation_id)

    async def repay_loan(
        self,
        loan_account_id: str,
        payment: Decimal,
        from_account_id: str,
        on_date: Optional[dt.date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LoanRepayment:
        return await self._service.record_loan_repayment(
            loan_account_id,
            payment,
            from_account_id,
            on_date,
            correlation_id,
        )


def create_app_components(
    use_storage: bool = True,
) -> tuple[TransactionFlow, RecurringFlow, FinancialFlow, RecordStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the configured storage backend.
                    Set to False for in-memory storage (testing).

    Returns:
        (transaction_flow, recurring_flow, financial_flow, record_store)
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    store: RecordStoreInterface
    audit_logger: AuditLogger

    if use_storage and settings.app.storage_backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsRecordStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e), fallback="memory")
            store = InMemoryRecordStore()
            audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        store = InMemoryRecordStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    validator = TransactionValidator()
    engine = LedgerEngine(
        store,
        audit_logger=audit_logger,
        validator=validator,
        tolerance=settings.ledger.balance_tolerance,
    )
    scheduler = RecurringScheduler(
        store,
        engine,
        audit_logger=audit_logger,
        validator=validator,
        auto_tags=settings.ledger.auto_generated_tags_list,
    )

    transaction_flow = TransactionFlow(
        store,
        engine=engine,
        validator=validator,
        audit_logger=audit_logger,
    )
    recurring_flow = RecurringFlow(
        store,
        scheduler,
        audit_logger=audit_logger,
    )
    financial_flow = FinancialFlow(FinancialService(
        store,
        engine,
        audit_logger=audit_logger,
        validator=validator,
        income_category=settings.ledger.interest_income_category,
        expense_category=settings.ledger.interest_expense_category,
    ))

    return transaction_flow, recurring_flow, financial_flow, store
