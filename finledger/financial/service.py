"""
Financial Service

Automated account postings: interest earned, credit card interest,
fixed deposit maturity and loan repayments.

FLOW (per posting):
1. Re-read the account under its lock (another run may have posted already)
2. Check the guard date (last_interest_date, last_billing_date, fd_matured)
3. Insert the transaction and post it through the ledger engine
4. Record the guard on the account

CRITICAL BOUNDARIES:
- Every balance change goes through LedgerEngine.create_entries
- A posting whose guard cannot be recorded is reversed and removed, so
  a retry cannot post twice
- One failing account never stops the daily run. Failures are reported
  in the FinancialReport alongside the postings.
"""

from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger, create_correlation_id
from finledger.concurrency import KeyedLock
from finledger.config import get_settings
from finledger.exceptions import ProcessingError, ValidationError
from finledger.financial.calculations import (
    calculate_interest,
    credit_used,
    fd_maturity,
    is_billing_day,
    is_fd_matured,
    loan_outstanding,
    split_loan_payment,
)
from finledger.ledger import LedgerEngine
from finledger.models.audit import AuditEventType
from finledger.models.ledger import (
    Account,
    AccountFailure,
    AccountType,
    FinancialReport,
    InterestFrequency,
    LoanRepayment,
    Transaction,
    TransactionType,
)
from finledger.recurring.schedule import parse_date
from finledger.services.storage import NotFoundError, RecordStoreInterface
from finledger.validation import TransactionValidator


# Debt and deposit accounts have their own interest handling
NO_DAILY_ACCRUAL = {AccountType.CARD, AccountType.LOAN, AccountType.FIXED_DEPOSIT}

# A card statement charges one month of interest
BILLING_PERIOD_DAYS = 30


class FinancialService:
    """
    Posts interest, card charges, deposit maturities and loan
    repayments through the ledger engine.

    Postings are serialized per account id.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        engine: LedgerEngine,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        income_category: Optional[str] = None,
        expense_category: Optional[str] = None,
    ):
        """
        Args:
            store: Record store holding accounts and transactions
            engine: Ledger engine every posting goes through
            audit_logger: Optional audit trail
            validator: Transaction validator (default: TransactionValidator())
            income_category: Category for interest earned
                             (default: settings.ledger.interest_income_category)
            expense_category: Category for interest charged
                              (default: settings.ledger.interest_expense_category)
        """
        self._store = store
        self._engine = engine
        self._audit_logger = audit_logger
        self._validator = validator or TransactionValidator()
        if income_category is None or expense_category is None:
            settings = get_settings().ledger
            income_category = income_category or settings.interest_income_category
            expense_category = expense_category or settings.interest_expense_category
        self._income_category = income_category
        self._expense_category = expense_category
        self._account_locks = KeyedLock()
        self._logger = structlog.get_logger()

    # -------------------------------------------------------------------------
    # Interest
    # -------------------------------------------------------------------------

    async def post_interest(
        self,
        account_id: str,
        as_of: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Accrue interest since the last posting (or account creation).

        Returns:
            The interest transaction, or None when nothing is due (no rate,
            non-positive balance, already posted for as_of, or a card,
            loan or fixed deposit account)
        """
        as_of = parse_date(as_of) if as_of else date.today()

        async with self._account_locks.hold(account_id):
            account = await self._require_account(account_id)
            if not account.earns_interest or account.type in NO_DAILY_ACCRUAL:
                return None

            since = account.last_interest_date or account.created_at.date()
            days = (as_of - since).days
            if days <= 0:
                return None

            amount = calculate_interest(
                account.balance, account.interest_rate, account.interest_frequency, days
            )
            if amount <= 0:
                return None

            transaction = Transaction(
                type=TransactionType.INCOME,
                amount=amount,
                account_id=account.id,
                category_id=self._income_category,
                date=as_of,
                notes=(
                    f"Interest earned on {account.name or account.id} "
                    f"({account.interest_rate}% {_frequency_label(account.interest_frequency)})"
                ),
                tags=["interest", "automated"],
            )
            await self._post(transaction, correlation_id)
            await self._record_guard(
                account.id, {"last_interest_date": as_of}, [transaction], correlation_id
            )

        await self._log_posting(
            AuditEventType.INTEREST_POSTED,
            account,
            transaction,
            f"Interest of {amount} posted for {days} days",
            correlation_id,
        )
        return transaction

    async def charge_card_interest(
        self,
        account_id: str,
        as_of: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Charge one month of interest on a card's debt on its billing day.

        Returns:
            The interest charge, or None when not a card, not its billing
            day, already billed for as_of, or nothing is owed
        """
        as_of = parse_date(as_of) if as_of else date.today()

        async with self._account_locks.hold(account_id):
            account = await self._require_account(account_id)
            if not is_billing_day(account, as_of) or account.last_billing_date == as_of:
                return None

            outstanding = credit_used(account)
            amount = calculate_interest(
                outstanding, account.interest_rate, account.interest_frequency, BILLING_PERIOD_DAYS
            )
            if amount <= 0:
                return None

            transaction = Transaction(
                type=TransactionType.EXPENSE,
                amount=amount,
                account_id=account.id,
                category_id=self._expense_category,
                date=as_of,
                notes=f"Credit card interest charge ({account.interest_rate}% on {outstanding})",
                tags=["interest", "credit-card", "automated"],
            )
            await self._post(transaction, correlation_id)
            await self._record_guard(
                account.id, {"last_billing_date": as_of}, [transaction], correlation_id
            )

        await self._log_posting(
            AuditEventType.CARD_INTEREST_CHARGED,
            account,
            transaction,
            f"Card interest of {amount} charged on {outstanding} owed",
            correlation_id,
        )
        return transaction

    # -------------------------------------------------------------------------
    # Fixed deposits
    # -------------------------------------------------------------------------

    async def mature_deposit(
        self,
        account_id: str,
        as_of: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Post a matured fixed deposit's interest and mark it matured.

        Returns:
            The maturity interest transaction, or None when not a deposit,
            not yet matured, already matured, or it earned nothing

        Raises:
            ValidationError: The deposit has no principal or term dates
        """
        as_of = parse_date(as_of) if as_of else date.today()

        async with self._account_locks.hold(account_id):
            account = await self._require_account(account_id)
            if not is_fd_matured(account, as_of) or account.fd_matured:
                return None

            maturity = fd_maturity(account)
            if maturity is None:
                raise ValidationError(
                    f"Fixed deposit {account.id} needs a principal, start date and maturity date"
                )

            if maturity["interest"] <= 0:
                await self._store.update_account(account.id, {"fd_matured": True})
                return None

            transaction = Transaction(
                type=TransactionType.INCOME,
                amount=maturity["interest"],
                account_id=account.id,
                category_id=self._income_category,
                date=as_of,
                notes=f"Fixed deposit maturity interest for {account.name or account.id}",
                tags=["fd-maturity", "interest", "automated"],
            )
            await self._post(transaction, correlation_id)
            await self._record_guard(
                account.id, {"fd_matured": True}, [transaction], correlation_id
            )

        await self._log_posting(
            AuditEventType.DEPOSIT_MATURED,
            account,
            transaction,
            f"Deposit matured at {maturity['maturity_amount']}",
            correlation_id,
        )
        return transaction

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    async def record_loan_repayment(
        self,
        loan_account_id: str,
        payment: Decimal,
        from_account_id: str,
        on_date: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LoanRepayment:
        """
        Pay a loan installment from another account.

        The payment is split into one month of interest on the outstanding
        amount (an expense) and principal (a transfer into the loan
        account). loan_outstanding drops by the principal part.

        Raises:
            ValidationError: Non-positive payment, or not a loan account
            NotFoundError: Loan or paying account missing
        """
        on_date = parse_date(on_date) if on_date else date.today()
        correlation_id = correlation_id or create_correlation_id()
        if payment <= 0:
            raise ValidationError("Loan repayment must be a positive amount")

        async with self._account_locks.hold(loan_account_id):
            loan = await self._require_account(loan_account_id)
            if loan.type != AccountType.LOAN:
                raise ValidationError(f"Account is not a loan account: {loan_account_id}")

            outstanding = loan_outstanding(loan)
            interest, principal = split_loan_payment(outstanding, loan.interest_rate, payment)
            new_outstanding = max(Decimal("0"), outstanding - principal)
            label = loan.name or loan.id

            posted: list[Transaction] = []
            interest_tx = principal_tx = None
            try:
                if interest > 0:
                    interest_tx = Transaction(
                        type=TransactionType.EXPENSE,
                        amount=interest,
                        account_id=from_account_id,
                        category_id=self._expense_category,
                        date=on_date,
                        notes=f"Loan interest for {label}",
                        tags=["loan-repayment", "interest"],
                    )
                    await self._post(interest_tx, correlation_id)
                    posted.append(interest_tx)
                if principal > 0:
                    principal_tx = Transaction(
                        type=TransactionType.TRANSFER,
                        amount=principal,
                        account_id=from_account_id,
                        to_account_id=loan.id,
                        date=on_date,
                        notes=f"Loan principal for {label}",
                        tags=["loan-repayment", "principal"],
                    )
                    await self._post(principal_tx, correlation_id)
                    posted.append(principal_tx)
            except Exception:
                for transaction in posted:
                    await self._discard(transaction, correlation_id)
                raise

            await self._record_guard(
                loan.id,
                {"loan_outstanding": new_outstanding, "last_payment_date": on_date},
                posted,
                correlation_id,
            )

        self._logger.info(
            "loan_repayment_recorded",
            loan_account_id=loan.id,
            payment=str(payment),
            principal=str(principal),
            interest=str(interest),
            new_outstanding=str(new_outstanding),
        )
        if self._audit_logger:
            await self._audit_logger.log_loan_repayment(
                loan_account_id=loan.id,
                payment=payment,
                principal=principal,
                interest=interest,
                new_outstanding=new_outstanding,
                correlation_id=correlation_id,
            )
        return LoanRepayment(
            loan_account_id=loan.id,
            interest_transaction=interest_tx,
            principal_transaction=principal_tx,
            interest_portion=interest,
            principal_portion=principal,
            new_outstanding=new_outstanding,
        )

    # -------------------------------------------------------------------------
    # Daily run
    # -------------------------------------------------------------------------

    async def run_daily(
        self,
        as_of: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> FinancialReport:
        """
        Run interest accrual, card billing and deposit maturity for
        every account.

        Safe to call more than once a day: each posting checks its guard.
        """
        as_of = parse_date(as_of) if as_of else date.today()
        correlation_id = correlation_id or create_correlation_id()
        report = FinancialReport(as_of=as_of)

        processes: list[tuple[str, Callable[..., Awaitable[Optional[Transaction]]], list]] = [
            ("interest", self.post_interest, report.interest),
            ("card_interest", self.charge_card_interest, report.card_interest),
            ("fd_maturity", self.mature_deposit, report.fd_maturities),
        ]

        for account in await self._store.list_accounts():
            for process, handler, posted in processes:
                try:
                    transaction = await handler(account.id, as_of, correlation_id)
                except Exception as e:
                    await self._record_failure(report, account, process, e, correlation_id)
                    continue
                if transaction is not None:
                    posted.append(transaction)

        self._logger.info(
            "financial_batch_completed",
            as_of=as_of.isoformat(),
            created=report.created_count,
            failed=len(report.failures),
        )
        if self._audit_logger:
            await self._audit_logger.log_financial_batch_completed(
                as_of=as_of,
                created_count=report.created_count,
                failure_count=len(report.failures),
                correlation_id=correlation_id,
            )
        return report

    async def _record_failure(
        self,
        report: FinancialReport,
        account: Account,
        process: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        failure = AccountFailure(
            account_id=account.id,
            account_name=account.name or None,
            process=process,
            error_type=type(error).__name__,
            message=str(error),
        )
        report.failures.append(failure)
        self._logger.error(
            "financial_process_failed",
            account_id=account.id,
            process=process,
            error_type=failure.error_type,
            error=failure.message,
        )
        if self._audit_logger:
            await self._audit_logger.log_financial_failed(
                account_id=account.id,
                account_name=failure.account_name,
                process=process,
                error_type=failure.error_type,
                error_message=failure.message,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Posting helpers
    # -------------------------------------------------------------------------

    async def _require_account(self, account_id: str) -> Account:
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    async def _post(self, transaction: Transaction, correlation_id: Optional[UUID]) -> None:
        """Insert a transaction and post it; nothing is kept if posting fails."""
        self._validator.ensure_valid_transaction(transaction)
        await self._store.insert_transaction(transaction)
        try:
            await self._engine.create_entries(transaction, correlation_id)
        except Exception:
            await self._store.delete_transaction(transaction.id)
            raise

    async def _record_guard(
        self,
        account_id: str,
        fields: dict,
        transactions: list[Transaction],
        correlation_id: Optional[UUID],
    ) -> None:
        """Save the account fields that stop a second posting, or undo the postings."""
        try:
            await self._store.update_account(account_id, fields)
        except Exception as e:
            for transaction in transactions:
                await self._discard(transaction, correlation_id)
            raise ProcessingError(account_id, f"Failed to update account: {e}") from e

    async def _discard(self, transaction: Transaction, correlation_id: Optional[UUID]) -> None:
        try:
            await self._engine.reverse_entries(transaction, correlation_id)
            await self._store.delete_transaction(transaction.id)
        except Exception as e:
            self._logger.error(
                "financial_cleanup_failed",
                transaction_id=transaction.id,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="discard_transaction",
                    error_message=str(e),
                    entity_type="transaction",
                    entity_id=transaction.id,
                    correlation_id=correlation_id,
                )

    async def _log_posting(
        self,
        event_type: AuditEventType,
        account: Account,
        transaction: Transaction,
        description: str,
        correlation_id: Optional[UUID],
    ) -> None:
        self._logger.info(
            event_type.value,
            account_id=account.id,
            transaction_id=transaction.id,
            amount=str(transaction.amount),
        )
        if self._audit_logger:
            await self._audit_logger.log_account_posting(
                event_type=event_type,
                account_id=account.id,
                transaction_id=transaction.id,
                amount=transaction.amount,
                description=description,
                correlation_id=correlation_id,
            )


def _frequency_label(frequency: Optional[InterestFrequency]) -> str:
    return (frequency or InterestFrequency.MONTHLY).value
