"""Tests for interest, card, loan and fixed deposit arithmetic."""

from datetime import date
from decimal import Decimal

from finledger.financial import (
    available_credit,
    calculate_interest,
    credit_utilization,
    fd_maturity,
    is_billing_day,
    is_fd_matured,
    loan_schedule,
    loan_summary,
    split_loan_payment,
)
from finledger.models.ledger import Account, AccountType, InterestFrequency


class TestCalculateInterest:
    """Simple interest per frequency."""

    def test_monthly(self):
        assert calculate_interest(
            Decimal("10000"), Decimal("12"), InterestFrequency.MONTHLY, 30
        ) == Decimal("100.00")

    def test_daily(self):
        assert calculate_interest(
            Decimal("10000"), Decimal("3.65"), InterestFrequency.DAILY, 10
        ) == Decimal("10.00")

    def test_weekly(self):
        assert calculate_interest(
            Decimal("5200"), Decimal("10"), InterestFrequency.WEEKLY, 7
        ) == Decimal("10.00")

    def test_annually(self):
        assert calculate_interest(
            Decimal("10000"), Decimal("5"), InterestFrequency.ANNUALLY, 365
        ) == Decimal("500.00")

    def test_unset_frequency_is_monthly(self):
        assert calculate_interest(Decimal("10000"), Decimal("12"), None, 15) == Decimal("50.00")

    def test_rounds_to_cents(self):
        assert calculate_interest(
            Decimal("1000"), Decimal("1"), InterestFrequency.DAILY, 1
        ) == Decimal("0.03")

    def test_nothing_accrues(self):
        monthly = InterestFrequency.MONTHLY
        assert calculate_interest(Decimal("-500"), Decimal("12"), monthly, 30) == 0
        assert calculate_interest(Decimal("500"), None, monthly, 30) == 0
        assert calculate_interest(Decimal("500"), Decimal("12"), monthly, 0) == 0


def card(**overrides) -> Account:
    fields = dict(
        id="acc-card",
        type=AccountType.CARD,
        balance=Decimal("-250"),
        credit_limit=Decimal("1000"),
        billing_day=31,
    )
    fields.update(overrides)
    return Account(**fields)


class TestCards:
    """Billing days and credit usage."""

    def test_billing_day_clamped_to_month_end(self):
        assert is_billing_day(card(), date(2024, 2, 29)) is True
        assert is_billing_day(card(), date(2024, 2, 28)) is False
        assert is_billing_day(card(), date(2024, 3, 31)) is True

    def test_non_card_never_bills(self):
        bank = Account(type=AccountType.BANK, billing_day=15)
        assert is_billing_day(bank, date(2024, 1, 15)) is False

    def test_utilization_and_available_credit(self):
        assert credit_utilization(card()) == 25
        assert available_credit(card()) == Decimal("750")

    def test_card_in_credit(self):
        assert credit_utilization(card(balance=Decimal("100"))) == 0
        assert available_credit(card(balance=Decimal("100"))) == Decimal("1000")


def loan(**overrides) -> Account:
    fields = dict(
        id="acc-loan",
        type=AccountType.LOAN,
        loan_principal=Decimal("1000"),
        loan_installment=Decimal("250"),
        interest_rate=Decimal("0"),
    )
    fields.update(overrides)
    return Account(**fields)


class TestLoans:
    """Payment split and schedules."""

    def test_split(self):
        assert split_loan_payment(
            Decimal("12000"), Decimal("12"), Decimal("1000")
        ) == (Decimal("120.00"), Decimal("880.00"))

    def test_interest_capped_at_payment(self):
        assert split_loan_payment(
            Decimal("12000"), Decimal("12"), Decimal("100")
        ) == (Decimal("100"), Decimal("0"))

    def test_interest_free_schedule(self):
        schedule = loan_schedule(loan())
        assert [row["principal"] for row in schedule] == [Decimal("250")] * 4
        assert schedule[-1]["balance"] == 0

    def test_final_payment_is_short(self):
        schedule = loan_schedule(loan(interest_rate=Decimal("12"), loan_installment=Decimal("1000")))
        assert len(schedule) == 2
        assert schedule[0]["interest"] == Decimal("10.00")
        assert schedule[1]["principal"] == Decimal("10.00")
        assert schedule[1]["balance"] == 0

    def test_installment_below_interest_gives_empty_schedule(self):
        assert loan_schedule(loan(interest_rate=Decimal("12"), loan_installment=Decimal("5"))) == []

    def test_summary_uses_outstanding(self):
        summary = loan_summary(loan(loan_outstanding=Decimal("600")))
        assert summary["remaining_payments"] == 3
        assert summary["total_payments"] == Decimal("600")
        assert summary["total_interest"] == 0
        assert summary["paid_amount"] == Decimal("400")

    def test_non_loan(self):
        assert loan_schedule(Account()) == []
        assert loan_summary(Account()) is None


class TestFixedDeposits:
    """Maturity value."""

    def test_one_year_term(self):
        deposit = Account(
            type=AccountType.FIXED_DEPOSIT,
            interest_rate=Decimal("10"),
            fd_principal=Decimal("10000"),
            fd_start_date=date(2023, 1, 1),
            fd_maturity_date=date(2024, 1, 1),
        )

        info = fd_maturity(deposit)

        assert info["maturity_amount"] == Decimal("11000.00")
        assert info["interest"] == Decimal("1000.00")
        assert info["years"] == Decimal("1.00")
        assert is_fd_matured(deposit, date(2023, 12, 31)) is False
        assert is_fd_matured(deposit, date(2024, 1, 1)) is True

    def test_incomplete_term(self):
        deposit = Account(type=AccountType.FIXED_DEPOSIT, fd_maturity_date=date(2024, 1, 1))
        assert fd_maturity(deposit) is None
        assert fd_maturity(Account(fd_principal=Decimal("5"))) is None
