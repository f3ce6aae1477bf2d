"""
Ledger and scheduler errors.

Storage-level errors (StorageError, NotFoundError, ...) live with the
storage interface; these cover what the accounting core itself rejects.
"""

from typing import Optional

from finledger.models.validation import ValidationIssue


class LedgerError(Exception):
    """Base exception for the accounting core."""
    pass


class ValidationError(LedgerError):
    """Transaction or rule rejected before any store write."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        self.issues = issues or []
        super().__init__(message)

    @classmethod
    def from_issues(cls, subject: str, issues: list[ValidationIssue]) -> "ValidationError":
        details = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        return cls(f"Invalid {subject}: {details}", issues)


class ConsistencyError(LedgerError):
    """Debits and credits of a transaction do not balance."""

    def __init__(self, transaction_id: str, message: str):
        self.transaction_id = transaction_id
        super().__init__(message)


class ProcessingError(LedgerError):
    """A recurring rule or automated account posting could not complete."""

    def __init__(self, subject_id: str, message: str):
        self.subject_id = subject_id
        super().__init__(message)
