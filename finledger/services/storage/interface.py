"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep Google Sheets (or any other document store) swappable
2. Use in-memory storage for testing
3. Inject the store into the ledger engine and scheduler explicitly,
   never reach for a global handle
4. Keep accounting logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just get / list / insert / update / delete per record type, plus one
atomic balance adjustment so concurrent postings cannot lose updates.

Transactions have no update method: they are immutable once recorded.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finledger.models.audit import AuditEvent
from finledger.models.ledger import (
    Account,
    LedgerEntry,
    RecurringRule,
    Transaction,
)


class RecordStoreInterface(ABC):
    """
    Abstract interface for the accounting record store.

    Any storage implementation (Google Sheets, SQLite, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        """
        Retrieve an account by its ID.

        Returns:
            The account if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        """List all accounts."""
        pass

    @abstractmethod
    async def insert_account(self, account: Account) -> str:
        """
        Save a new account.

        Returns:
            The account's ID

        Raises:
            DuplicateError: If an account with this ID exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_account(self, account_id: str, fields: dict[str, Any]) -> Account:
        """
        Apply a partial update to an account.

        Balance changes must go through adjust_balance instead.

        Raises:
            NotFoundError: If account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        """Delete an account. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def adjust_balance(self, account_id: str, delta: Decimal) -> Decimal:
        """
        Atomically add delta to an account's balance.

        Two concurrent calls for the same account must never interleave
        their read-modify-write.

        Returns:
            The new balance

        Raises:
            NotFoundError: If account doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Retrieve a transaction by its ID."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        account_id: Optional[str] = None,
        recurring_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        Args:
            account_id: Transactions touching this account (either side)
            recurring_id: Transactions generated by this rule
            date_from: Transactions on or after this date
            date_to: Transactions on or before this date

        Returns:
            Matching transactions, oldest first
        """
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> str:
        """Save a new transaction and return its ID."""
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction. Returns False if it did not exist."""
        pass

    # -------------------------------------------------------------------------
    # Ledger entries
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_entries(
        self,
        transaction_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """List ledger entries for a transaction and/or a ledger account."""
        pass

    @abstractmethod
    async def insert_entry(self, entry: LedgerEntry) -> str:
        """Save a new ledger entry and return its ID."""
        pass

    @abstractmethod
    async def delete_entry(self, entry_id: str) -> bool:
        """Delete a single ledger entry."""
        pass

    @abstractmethod
    async def delete_entries(self, transaction_id: str) -> int:
        """
        Delete all ledger entries of a transaction.

        Returns:
            Number of entries deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Recurring rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        """Retrieve a recurring rule by its ID."""
        pass

    @abstractmethod
    async def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        """List recurring rules, optionally only active ones."""
        pass

    @abstractmethod
    async def insert_rule(self, rule: RecurringRule) -> str:
        """Save a new recurring rule and return its ID."""
        pass

    @abstractmethod
    async def update_rule(self, rule_id: str, fields: dict[str, Any]) -> RecurringRule:
        """
        Apply a partial update to a recurring rule.

        Returns:
            The updated rule

        Raises:
            NotFoundError: If rule doesn't exist
        """
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        """Delete a recurring rule. Returns False if it did not exist."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one recurring batch).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific record.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
