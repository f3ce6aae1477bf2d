"""
Recurring schedule arithmetic.

calculate_next_date is pure and deterministic, and it always moves the
date strictly forward. Month-based steps use relativedelta, which clamps
to the last day of a shorter month (Jan 31 + 1 month = Feb 28/29) instead
of spilling into the following month.
"""

from datetime import date, datetime, timedelta
from typing import Union

from dateutil.relativedelta import relativedelta

from finledger.models.ledger import Frequency


FREQUENCY_STEPS: dict[Frequency, Union[timedelta, relativedelta]] = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.BIWEEKLY: timedelta(days=14),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.SEMIANNUALLY: relativedelta(months=6),
    Frequency.YEARLY: relativedelta(years=1),
}

# Unknown frequencies fall back to monthly
DEFAULT_STEP = FREQUENCY_STEPS[Frequency.MONTHLY]


def parse_date(value: Union[date, datetime, str]) -> date:
    """Accept a date, a datetime or an ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def frequency_step(frequency: Union[Frequency, str]) -> Union[timedelta, relativedelta]:
    try:
        return FREQUENCY_STEPS[Frequency(frequency)]
    except ValueError:
        return DEFAULT_STEP


def calculate_next_date(current: Union[date, str], frequency: Union[Frequency, str]) -> date:
    """
    Next execution date after `current` for the given frequency.

    daily +1 day, weekly +7, biweekly +14, monthly +1 month,
    quarterly +3 months, semiannually +6 months, yearly +1 year.
    """
    return parse_date(current) + frequency_step(frequency)