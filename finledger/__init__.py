"""
Finledger - Source Package

The accounting core of a personal finance tracker: a double-entry
ledger that keeps account balances consistent with recorded
transactions, and a scheduler that turns recurring rules into
concrete transactions over time, plus automated interest, card billing,
loan repayment and fixed deposit postings.

DESIGN PRINCIPLES:
1. Every transaction posts balanced entries (debits == credits)
2. Fail early, fail visibly
3. One bad recurring rule never blocks the others
4. Every posting and reversal is auditable
5. Storage layer is swappable and injected, never global
"""

__version__ = "1.0.0"
__author__ = "Finledger Team"
