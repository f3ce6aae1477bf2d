"""
Interest, Card, Loan and Fixed Deposit Arithmetic

Pure functions over Decimal; nothing here reads or writes the store.
Money results are rounded to cents, half up.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from finledger.models.ledger import Account, AccountType, InterestFrequency


CENT = Decimal("0.01")
ZERO = Decimal("0")

# Longest repayment schedule produced (30 years of monthly payments)
MAX_SCHEDULE_MONTHS = 360

# frequency -> (periods per year, days per period)
INTEREST_PERIODS: dict[InterestFrequency, tuple[int, int]] = {
    InterestFrequency.DAILY: (365, 1),
    InterestFrequency.WEEKLY: (52, 7),
    InterestFrequency.MONTHLY: (12, 30),
    InterestFrequency.ANNUALLY: (1, 365),
}


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# INTEREST
# =============================================================================

def calculate_interest(
    principal: Decimal,
    annual_rate: Optional[Decimal],
    frequency: Optional[InterestFrequency],
    days: int,
) -> Decimal:
    """
    Simple interest on `principal` for `days` days.

    The annual rate (in percent) is split into per-period rates by
    `frequency` and prorated by days / days-per-period. An unset
    frequency is treated as monthly.

    Returns:
        Interest rounded to cents; zero for a non-positive principal,
        rate or day count
    """
    if not annual_rate or annual_rate <= 0 or principal <= 0 or days <= 0:
        return ZERO

    periods_per_year, days_per_period = INTEREST_PERIODS.get(
        frequency, INTEREST_PERIODS[InterestFrequency.MONTHLY]
    )
    period_rate = annual_rate / 100 / periods_per_year
    return to_cents(principal * period_rate * Decimal(days) / days_per_period)


# =============================================================================
# CREDIT CARDS
# =============================================================================

def effective_day(day: int, on: date) -> int:
    """Clamp a day of month to the last day of `on`'s month (31 -> 28 in Feb)."""
    return min(day, (on + relativedelta(day=31)).day)


def is_billing_day(account: Account, on: date) -> bool:
    if account.type != AccountType.CARD or not account.billing_day:
        return False
    return on.day == effective_day(account.billing_day, on)


def is_payment_due_day(account: Account, on: date) -> bool:
    if account.type != AccountType.CARD or not account.payment_due_day:
        return False
    return on.day == effective_day(account.payment_due_day, on)


def credit_used(account: Account) -> Decimal:
    """Debt on a card: the negative part of its balance."""
    return -min(account.balance, ZERO)


def credit_utilization(account: Account) -> int:
    """Percent of the credit limit in use, 0 when no limit is set."""
    if account.type != AccountType.CARD or not account.credit_limit:
        return 0
    percent = credit_used(account) / account.credit_limit * 100
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def available_credit(account: Account) -> Decimal:
    if account.type != AccountType.CARD or not account.credit_limit:
        return ZERO
    return account.credit_limit - credit_used(account)


# =============================================================================
# LOANS
# =============================================================================

def loan_outstanding(account: Account) -> Decimal:
    if account.loan_outstanding is not None:
        return account.loan_outstanding
    return account.loan_principal or ZERO


def split_loan_payment(
    outstanding: Decimal,
    annual_rate: Optional[Decimal],
    payment: Decimal,
) -> tuple[Decimal, Decimal]:
    """
    Split one monthly payment into (interest, principal).

    Interest is one month at the annual rate on the outstanding amount,
    capped at the payment so the principal part is never negative.
    """
    monthly_rate = (annual_rate or ZERO) / 100 / 12
    interest = min(to_cents(outstanding * monthly_rate), payment)
    return interest, payment - interest


def loan_schedule(account: Account) -> list[dict]:
    """
    Remaining repayment schedule at the account's installment.

    Returns list of dicts with: month, payment, principal, interest, balance.
    Empty when the account is not a loan or has no installment/principal.
    Stops early if an installment no longer covers the interest.
    """
    if account.type != AccountType.LOAN:
        return []

    principal = account.loan_principal or ZERO
    installment = account.loan_installment or ZERO
    if installment <= 0 or principal <= 0:
        return []

    monthly_rate = (account.interest_rate or ZERO) / 100 / 12
    balance = loan_outstanding(account)
    schedule = []

    for month in range(1, MAX_SCHEDULE_MONTHS + 1):
        if balance <= 0:
            break
        interest = to_cents(balance * monthly_rate)
        principal_part = min(installment - interest, balance)
        if principal_part <= 0:
            break
        balance -= principal_part
        schedule.append({
            "month": month,
            "payment": principal_part + interest,
            "principal": principal_part,
            "interest": interest,
            "balance": balance,
        })

    return schedule


def loan_summary(account: Account) -> Optional[dict]:
    """Totals over the remaining schedule; None for non-loan accounts."""
    if account.type != AccountType.LOAN:
        return None

    schedule = loan_schedule(account)
    principal = account.loan_principal or ZERO
    outstanding = loan_outstanding(account)
    return {
        "principal": principal,
        "outstanding": outstanding,
        "installment": account.loan_installment or ZERO,
        "interest_rate": account.interest_rate or ZERO,
        "total_payments": sum((row["payment"] for row in schedule), ZERO),
        "total_interest": sum((row["interest"] for row in schedule), ZERO),
        "remaining_payments": len(schedule),
        "paid_amount": principal - outstanding,
    }


# =============================================================================
# FIXED DEPOSITS
# =============================================================================

def fd_maturity(account: Account) -> Optional[dict]:
    """
    Compound the deposit annually over its term.

    maturity = principal * (1 + rate) ^ years, years = term days / 365

    Returns:
        dict with principal, maturity_amount, interest, years; None when
        the account is not a fixed deposit or its term is incomplete
    """
    if account.type != AccountType.FIXED_DEPOSIT:
        return None
    if not (account.fd_principal and account.fd_start_date and account.fd_maturity_date):
        return None

    principal = account.fd_principal
    rate = (account.interest_rate or ZERO) / 100
    years = Decimal((account.fd_maturity_date - account.fd_start_date).days) / 365

    maturity_amount = principal * (1 + rate) ** years
    return {
        "principal": principal,
        "maturity_amount": to_cents(maturity_amount),
        "interest": to_cents(maturity_amount - principal),
        "years": years.quantize(CENT, rounding=ROUND_HALF_UP),
    }


def is_fd_matured(account: Account, on: date) -> bool:
    if account.type != AccountType.FIXED_DEPOSIT or not account.fd_maturity_date:
        return False
    return account.fd_maturity_date <= on
