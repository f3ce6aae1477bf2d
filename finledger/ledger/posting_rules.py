"""
Posting Rules

Each transaction type carries exactly one posting rule: which field of
the transaction is debited, which is credited, and how the real account
balances move. The ledger engine dispatches through POSTING_RULES once
instead of re-deriving the logic per call site.

    type      debit           credit        balance effect
    expense   category_id     account_id    account_id -= amount
    income    account_id      category_id   account_id += amount
    transfer  to_account_id   account_id    account_id -= amount
                                            to_account_id += amount

Rules are deterministic and side-effect free; the engine does the writes.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict

from finledger.exceptions import ValidationError
from finledger.models.ledger import LedgerEntry, Transaction, TransactionType
from finledger.models.validation import ValidationIssue


class BalanceEffect(BaseModel):
    """Sign applied to the amount for the account named by `field`."""
    model_config = ConfigDict(frozen=True)

    field: str
    sign: int


class PostingRule(BaseModel):
    """How one transaction type posts to the ledger."""
    model_config = ConfigDict(frozen=True)

    transaction_type: TransactionType
    debit_field: str
    credit_field: str
    balance_effects: tuple[BalanceEffect, ...]
    label: str

    def build_entries(self, transaction: Transaction) -> list[LedgerEntry]:
        """Debit entry first, then credit entry. Both carry the full amount."""
        description = transaction.notes or self.label
        common: dict[str, Any] = {
            "transaction_id": transaction.id,
            "date": transaction.date,
            "type": self.transaction_type,
            "description": description,
        }
        return [
            LedgerEntry(
                account_id=getattr(transaction, self.debit_field),
                debit=transaction.amount,
                credit=Decimal("0"),
                **common,
            ),
            LedgerEntry(
                account_id=getattr(transaction, self.credit_field),
                debit=Decimal("0"),
                credit=transaction.amount,
                **common,
            ),
        ]

    def balance_deltas(self, transaction: Transaction) -> list[tuple[str, Decimal]]:
        """(account_id, signed delta) pairs, in application order."""
        return [
            (getattr(transaction, effect.field), transaction.amount * effect.sign)
            for effect in self.balance_effects
        ]

    def reversal_deltas(self, transaction: Transaction) -> list[tuple[str, Decimal]]:
        """Exact negation of balance_deltas."""
        return [(account_id, -delta) for account_id, delta in self.balance_deltas(transaction)]

    def touched_accounts(self, transaction: Transaction) -> list[str]:
        return [getattr(transaction, effect.field) for effect in self.balance_effects]


POSTING_RULES: dict[TransactionType, PostingRule] = {
    TransactionType.EXPENSE: PostingRule(
        transaction_type=TransactionType.EXPENSE,
        debit_field="category_id",
        credit_field="account_id",
        balance_effects=(BalanceEffect(field="account_id", sign=-1),),
        label="Expense",
    ),
    TransactionType.INCOME: PostingRule(
        transaction_type=TransactionType.INCOME,
        debit_field="account_id",
        credit_field="category_id",
        balance_effects=(BalanceEffect(field="account_id", sign=1),),
        label="Income",
    ),
    TransactionType.TRANSFER: PostingRule(
        transaction_type=TransactionType.TRANSFER,
        debit_field="to_account_id",
        credit_field="account_id",
        balance_effects=(
            BalanceEffect(field="account_id", sign=-1),
            BalanceEffect(field="to_account_id", sign=1),
        ),
        label="Transfer",
    ),
}


def get_posting_rule(transaction_type: Any) -> PostingRule:
    """Look up the rule for a type, rejecting anything unknown."""
    try:
        return POSTING_RULES[TransactionType(transaction_type)]
    except (KeyError, ValueError):
        raise ValidationError(
            f"Unknown transaction type: {transaction_type!r}",
            [ValidationIssue(
                field="type",
                issue_type="unknown_type",
                message=f"Unknown transaction type: {transaction_type!r}",
            )],
        )


def entry_totals(entries: list[LedgerEntry]) -> tuple[Decimal, Decimal]:
    """(total debits, total credits)."""
    debits = sum((entry.debit for entry in entries), Decimal("0"))
    credits = sum((entry.credit for entry in entries), Decimal("0"))
    return debits, credits


def is_balanced(entries: list[LedgerEntry], tolerance: Decimal = Decimal("0")) -> bool:
    """Debits equal credits (within tolerance, exclusive)."""
    debits, credits = entry_totals(entries)
    if tolerance == 0:
        return debits == credits
    return abs(debits - credits) < tolerance
