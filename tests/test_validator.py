"""Tests for TransactionValidator."""

import pytest
from datetime import date
from decimal import Decimal

from finledger.exceptions import ValidationError
from finledger.models.ledger import RecurringRule, Transaction, TransactionType
from finledger.validation import TransactionValidator


@pytest.fixture
def validator() -> TransactionValidator:
    return TransactionValidator()


def _tx(**overrides) -> Transaction:
    fields = dict(
        type=TransactionType.EXPENSE,
        amount=Decimal("10"),
        account_id="acc-1",
        category_id="cat-1",
        date=date(2024, 1, 1),
    )
    fields.update(overrides)
    return Transaction(**fields)


def _issue_types(result) -> set[str]:
    return {issue.issue_type for issue in result.issues}


class TestValidateTransaction:
    """Posting-shape checks."""

    def test_valid_expense(self, validator):
        result = validator.validate_transaction(_tx())
        assert result.is_valid
        assert result.issues == []

    def test_expense_needs_category(self, validator):
        result = validator.validate_transaction(_tx(category_id=None))
        assert result.has_errors
        assert result.issues[0].field == "category_id"

    def test_transfer_needs_destination(self, validator):
        result = validator.validate_transaction(
            _tx(type=TransactionType.TRANSFER, category_id=None)
        )
        assert result.issues[0].field == "to_account_id"
        assert result.issues[0].issue_type == "missing"

    def test_transfer_to_same_account(self, validator):
        result = validator.validate_transaction(
            _tx(type=TransactionType.TRANSFER, category_id=None, to_account_id="acc-1")
        )
        assert result.has_errors
        assert "same account" in result.issues[0].message

    def test_category_on_transfer_is_only_a_warning(self, validator):
        result = validator.validate_transaction(
            _tx(type=TransactionType.TRANSFER, to_account_id="acc-2")
        )
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_destination_on_income_is_only_a_warning(self, validator):
        result = validator.validate_transaction(
            _tx(type=TransactionType.INCOME, to_account_id="acc-2")
        )
        assert result.is_valid
        assert _issue_types(result) == {"ignored"}

    def test_unvalidated_fields_are_checked(self, validator):
        tx = Transaction.model_construct(
            id="tx-raw",
            type="gift",
            amount=Decimal("-3"),
            account_id="",
            to_account_id=None,
            category_id=None,
        )
        result = validator.validate_transaction(tx)
        assert result.error_count == 3
        assert _issue_types(result) == {"unknown_type", "invalid_value", "missing"}

    def test_non_numeric_amount(self, validator):
        tx = Transaction.model_construct(
            id="tx-raw",
            type="expense",
            amount="ten",
            account_id="acc-1",
            to_account_id=None,
            category_id="cat-1",
        )
        assert "invalid_format" in _issue_types(validator.validate_transaction(tx))

    def test_ensure_raises_with_issues(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.ensure_valid_transaction(_tx(category_id=None))
        assert exc_info.value.issues[0].field == "category_id"

    def test_ensure_ignores_warnings(self, validator):
        result = validator.ensure_valid_transaction(
            _tx(type=TransactionType.TRANSFER, to_account_id="acc-2")
        )
        assert result.warnings


class TestValidateRule:
    """Recurring rule checks."""

    def _rule(self, **overrides) -> RecurringRule:
        fields = dict(
            name="Salary",
            type=TransactionType.INCOME,
            amount=Decimal("5000"),
            account_id="acc-1",
            category_id="cat-salary",
            start_date=date(2024, 1, 25),
        )
        fields.update(overrides)
        return RecurringRule(**fields)

    def test_valid_rule(self, validator):
        assert validator.validate_rule(self._rule()).is_valid

    def test_rule_gets_posting_checks(self, validator):
        with pytest.raises(ValidationError, match="category"):
            validator.ensure_valid_rule(self._rule(category_id=None))

    def test_unknown_frequency_warns(self, validator):
        rule = self._rule().model_copy(update={"frequency": "hourly"})
        result = validator.validate_rule(rule)
        assert result.is_valid
        assert "unknown_frequency" in _issue_types(result)

    def test_end_before_start(self, validator):
        rule = self._rule().model_copy(update={"end_date": date(2023, 1, 1)})
        result = validator.validate_rule(rule)
        assert "inconsistent" in _issue_types(result)
