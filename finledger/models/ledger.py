"""
Core Data Models for Finledger

These models define the strict schemas for all records the accounting
core reads and writes. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Field-level constraints (positive amounts, known enums,
one-sided postings) live on the models. Rules that depend on the
transaction type (transfer needs a destination, everything else needs a
category) live in the validator so they are reported as domain issues.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid4())


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Supported transaction types.

    Each type has exactly one posting rule in finledger.ledger.posting_rules.
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Frequency(str, Enum):
    """How often a recurring rule materializes."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUALLY = "semiannually"
    YEARLY = "yearly"


class AccountType(str, Enum):
    """Kind of account; decides which automated postings apply."""
    CASH = "cash"
    BANK = "bank"
    WALLET = "wallet"
    CARD = "card"
    LOAN = "loan"
    FIXED_DEPOSIT = "fixed_deposit"


class InterestFrequency(str, Enum):
    """How an account's annual interest rate is compounded into periods."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ANNUALLY = "annually"


# =============================================================================
# ACCOUNTS & TRANSACTIONS
# =============================================================================

class Account(BaseModel):
    """
    A money-holding account (cash, bank, card, wallet...).

    CRITICAL: balance is only ever changed by the ledger engine's
    balance adjustment step. It is the running sum of the signed
    postings applied to this account.

    Interest, card, loan and fixed deposit fields are optional and only
    read by the financial service for the matching account type.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_id,
        description="Unique account ID"
    )
    name: str = Field(
        default="",
        max_length=200,
        description="Display name"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Signed balance"
    )
    currency: str = Field(
        default="LKR",
        min_length=3,
        max_length=3,
        description="ISO currency code"
    )
    created_at: dt.datetime = Field(default_factory=utc_now)
    type: AccountType = AccountType.BANK

    # Interest
    interest_rate: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Annual rate in percent"
    )
    interest_frequency: Optional[InterestFrequency] = None
    last_interest_date: Optional[dt.date] = None

    # Credit cards
    credit_limit: Optional[Decimal] = Field(default=None, ge=0)
    billing_day: Optional[int] = Field(default=None, ge=1, le=31)
    payment_due_day: Optional[int] = Field(default=None, ge=1, le=31)
    last_billing_date: Optional[dt.date] = None

    # Loans
    loan_principal: Optional[Decimal] = Field(default=None, ge=0)
    loan_outstanding: Optional[Decimal] = Field(default=None, ge=0)
    loan_installment: Optional[Decimal] = Field(default=None, ge=0)
    last_payment_date: Optional[dt.date] = None

    # Fixed deposits
    fd_principal: Optional[Decimal] = Field(default=None, ge=0)
    fd_start_date: Optional[dt.date] = None
    fd_maturity_date: Optional[dt.date] = None
    fd_matured: bool = False

    @model_validator(mode='after')
    def validate_deposit_term(self) -> 'Account':
        """A fixed deposit cannot mature before it starts."""
        if (
            self.fd_start_date
            and self.fd_maturity_date
            and self.fd_maturity_date < self.fd_start_date
        ):
            raise ValueError("Maturity date cannot be before start date")
        return self

    @property
    def earns_interest(self) -> bool:
        return bool(self.interest_rate) and self.interest_rate > 0


class Transaction(BaseModel):
    """
    A recorded income, expense or transfer.

    Created once and never edited. Deleting one must be preceded by
    reversing its ledger postings.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_id,
        description="Unique transaction ID"
    )
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount"
    )
    account_id: str = Field(
        ...,
        min_length=1,
        description="Source account (or the receiving account for income)"
    )
    to_account_id: Optional[str] = Field(
        default=None,
        description="Destination account, transfers only"
    )
    category_id: Optional[str] = Field(
        default=None,
        description="Income/expense category, not used by transfers"
    )
    date: dt.date
    notes: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    tags: list[str] = Field(default_factory=list)
    friend_id: Optional[str] = None

    # Back reference to the rule that generated this transaction (non-owning)
    recurring_id: Optional[str] = None
    is_auto_generated: bool = False

    created_at: dt.datetime = Field(default_factory=utc_now)


class LedgerEntry(BaseModel):
    """
    One side of a balanced posting.

    account_id is either a real account or a category acting as a
    nominal ledger account.
    """

    id: str = Field(default_factory=new_id)
    transaction_id: str
    account_id: str
    debit: Decimal = Field(default=Decimal("0"), ge=0)
    credit: Decimal = Field(default=Decimal("0"), ge=0)
    date: dt.date
    type: TransactionType
    description: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_single_sided(self) -> 'LedgerEntry':
        """Exactly one of debit/credit carries the amount."""
        if (self.debit > 0) == (self.credit > 0):
            raise ValueError("Ledger entry must have exactly one of debit or credit nonzero")
        return self

    @property
    def signed_amount(self) -> Decimal:
        """Debit minus credit."""
        return self.debit - self.credit


# =============================================================================
# RECURRING RULES
# =============================================================================

class RecurringRule(BaseModel):
    """
    A template that materializes into a transaction on a schedule.

    Lifecycle:
    - Created active with next_date = start_date
    - Each materialization advances next_date by one frequency step
    - Deactivated when end_date falls before the next due date
    - is_active is a toggle: an inactive rule can be resumed
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200
    )
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    account_id: str = Field(..., min_length=1)
    to_account_id: Optional[str] = None
    category_id: Optional[str] = None
    frequency: Frequency = Frequency.MONTHLY
    start_date: dt.date
    end_date: Optional[dt.date] = None
    next_date: Optional[dt.date] = None
    last_processed: Optional[dt.date] = None
    is_active: bool = True
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[list[str]] = Field(
        default=None,
        description="Tags for generated transactions; None means the configured auto tags"
    )
    friend_id: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def default_next_date(cls, data: Any) -> Any:
        """A new rule is first due on its start date."""
        if isinstance(data, dict) and "next_date" not in data:
            data = {**data, "next_date": data.get("start_date")}
        return data

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurringRule':
        """Validate date relationships."""
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self

    def is_due(self, as_of: dt.date) -> bool:
        """Active, scheduled, and next_date on or before as_of."""
        return self.is_active and self.next_date is not None and self.next_date <= as_of

    def is_expired(self) -> bool:
        """end_date passed before the next scheduled run."""
        return (
            self.end_date is not None
            and self.next_date is not None
            and self.end_date < self.next_date
        )


# =============================================================================
# BATCH RESULTS
# =============================================================================

class RuleFailure(BaseModel):
    """A recurring rule that could not be materialized."""

    rule_id: str
    rule_name: Optional[str] = None
    error_type: str
    message: str


class ProcessingReport(BaseModel):
    """
    Result of one recurring batch run.

    Successes and failures are reported separately so that a partial
    failure is never silent to the caller.
    """

    as_of: dt.date
    created: list[Transaction] = Field(default_factory=list)
    failures: list[RuleFailure] = Field(default_factory=list)
    deactivated: list[str] = Field(
        default_factory=list,
        description="Rules switched off because their end date passed"
    )
    skipped: list[str] = Field(
        default_factory=list,
        description="Active rules that were not due"
    )

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def created_count(self) -> int:
        return len(self.created)


class AccountFailure(BaseModel):
    """An automated account posting that could not complete."""

    account_id: str
    account_name: Optional[str] = None
    process: str = Field(
        ...,
        description="interest, card_interest or fd_maturity"
    )
    error_type: str
    message: str


class FinancialReport(BaseModel):
    """
    Result of one daily financial run.

    Like ProcessingReport, one failing account never hides the others.
    """

    as_of: dt.date
    interest: list[Transaction] = Field(default_factory=list)
    card_interest: list[Transaction] = Field(default_factory=list)
    fd_maturities: list[Transaction] = Field(default_factory=list)
    failures: list[AccountFailure] = Field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def created_count(self) -> int:
        return len(self.interest) + len(self.card_interest) + len(self.fd_maturities)


class LoanRepayment(BaseModel):
    """Outcome of one loan repayment: the postings and the principal/interest split."""

    loan_account_id: str
    interest_transaction: Optional[Transaction] = None
    principal_transaction: Optional[Transaction] = None
    interest_portion: Decimal
    principal_portion: Decimal
    new_outstanding: Decimal
