"""
Transaction and Recurring Rule Validation

DESIGN DECISION: Everything the ledger engine needs to know about a
transaction's shape is checked here, BEFORE any store write:
- The type must be one we have a posting rule for
- The amount must be positive
- A source account is always required
- A transfer needs a distinct destination account
- Income and expense need a category

Recurring rules get the same checks (they materialize into
transactions) plus schedule checks.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; ensure_* turns errors into a ValidationError.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from finledger.exceptions import ValidationError
from finledger.models.ledger import (
    Frequency,
    RecurringRule,
    Transaction,
    TransactionType,
)
from finledger.models.validation import ValidationIssue, ValidationResult


def _coerce_type(value: Any) -> Optional[TransactionType]:
    try:
        return TransactionType(value)
    except ValueError:
        return None


def _coerce_amount(value: Any) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


class TransactionValidator:
    """Validates transactions and recurring rules against the posting rules."""

    def _check_posting_fields(
        self,
        type_value: Any,
        amount_value: Any,
        account_id: Optional[str],
        to_account_id: Optional[str],
        category_id: Optional[str],
    ) -> list[ValidationIssue]:
        issues = []

        tx_type = _coerce_type(type_value)
        if tx_type is None:
            issues.append(ValidationIssue(
                field="type",
                issue_type="unknown_type",
                message=f"Unknown transaction type: {type_value!r}",
            ))

        amount = _coerce_amount(amount_value)
        if amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message=f"Amount is not a number: {amount_value!r}",
            ))
        elif amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
            ))

        if not account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="An account is required",
            ))

        if tx_type == TransactionType.TRANSFER:
            if not to_account_id:
                issues.append(ValidationIssue(
                    field="to_account_id",
                    issue_type="missing",
                    message="A transfer needs a destination account",
                ))
            elif to_account_id == account_id:
                issues.append(ValidationIssue(
                    field="to_account_id",
                    issue_type="invalid_value",
                    message="Cannot transfer to the same account",
                ))
            if category_id:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="ignored",
                    message="Transfers do not use a category; it will be ignored",
                    severity="warning",
                ))
        elif tx_type is not None:
            if not category_id:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="missing",
                    message=f"A category is required for {tx_type.value}",
                ))
            if to_account_id:
                issues.append(ValidationIssue(
                    field="to_account_id",
                    issue_type="ignored",
                    message="Only transfers use a destination account; it will be ignored",
                    severity="warning",
                ))

        return issues

    def validate_transaction(self, transaction: Transaction) -> ValidationResult:
        """Check a transaction can be posted."""
        issues = self._check_posting_fields(
            transaction.type,
            transaction.amount,
            transaction.account_id,
            transaction.to_account_id,
            transaction.category_id,
        )
        return ValidationResult(subject_id=transaction.id, issues=issues)

    def validate_rule(self, rule: RecurringRule) -> ValidationResult:
        """Check a recurring rule can be materialized."""
        issues = self._check_posting_fields(
            rule.type,
            rule.amount,
            rule.account_id,
            rule.to_account_id,
            rule.category_id,
        )

        try:
            Frequency(rule.frequency)
        except ValueError:
            issues.append(ValidationIssue(
                field="frequency",
                issue_type="unknown_frequency",
                message=f"Unknown frequency {rule.frequency!r}; monthly will be used",
                severity="warning",
            ))

        if rule.end_date and rule.start_date and rule.end_date < rule.start_date:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="inconsistent",
                message="End date is before start date",
            ))

        return ValidationResult(subject_id=rule.id, issues=issues)

    def ensure_valid_transaction(self, transaction: Transaction) -> ValidationResult:
        result = self.validate_transaction(transaction)
        if result.has_errors:
            raise ValidationError.from_issues(
                "transaction",
                [i for i in result.issues if i.severity == "error"],
            )
        return result

    def ensure_valid_rule(self, rule: RecurringRule) -> ValidationResult:
        result = self.validate_rule(rule)
        if result.has_errors:
            raise ValidationError.from_issues(
                "recurring rule",
                [i for i in result.issues if i.severity == "error"],
            )
        return result
