"""Recurring transaction package."""

from finledger.recurring.schedule import (
    FREQUENCY_STEPS,
    calculate_next_date,
    frequency_step,
    parse_date,
)
from finledger.recurring.scheduler import RecurringScheduler

__all__ = [
    "FREQUENCY_STEPS",
    "RecurringScheduler",
    "calculate_next_date",
    "frequency_step",
    "parse_date",
]
