"""Interest, card billing, loan and fixed deposit postings."""

from finledger.financial.calculations import (
    available_credit,
    calculate_interest,
    credit_utilization,
    fd_maturity,
    is_billing_day,
    is_fd_matured,
    is_payment_due_day,
    loan_schedule,
    loan_summary,
    split_loan_payment,
)
from finledger.financial.service import FinancialService

__all__ = [
    "FinancialService",
    "available_credit",
    "calculate_interest",
    "credit_utilization",
    "fd_maturity",
    "is_billing_day",
    "is_fd_matured",
    "is_payment_due_day",
    "loan_schedule",
    "loan_summary",
    "split_loan_payment",
]
