"""
Data Models Package

This package contains all Pydantic models used by Finledger.
All records flowing through the ledger and scheduler must conform to these schemas.
"""

from finledger.models.ledger import (
    Account,
    Frequency,
    LedgerEntry,
    ProcessingReport,
    RecurringRule,
    RuleFailure,
    Transaction,
    TransactionType,
    new_id,
)
from finledger.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "Frequency",
    "LedgerEntry",
    "ProcessingReport",
    "RecurringRule",
    "RuleFailure",
    "Transaction",
    "TransactionType",
    "new_id",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
