"""Double-entry ledger package."""

from finledger.ledger.engine import LedgerEngine
from finledger.ledger.posting_rules import (
    POSTING_RULES,
    BalanceEffect,
    PostingRule,
    entry_totals,
    get_posting_rule,
    is_balanced,
)

__all__ = [
    "POSTING_RULES",
    "BalanceEffect",
    "LedgerEngine",
    "PostingRule",
    "entry_totals",
    "get_posting_rule",
    "is_balanced",
]
