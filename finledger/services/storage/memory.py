"""
In-Memory Storage Implementation

Used by the test suite and for local runs without a spreadsheet.
Records are kept as pydantic models and copied on the way in and out,
so callers can never mutate stored state behind the store's back.
"""

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
from finledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    RecordStoreInterface,
)


class InMemoryRecordStore(RecordStoreInterface):
    """Dictionary-backed record store."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, Transaction] = {}
        self._entries: dict[str, LedgerEntry] = {}
        self._rules: dict[str, RecurringRule] = {}

    # Accounts

    async def get_account(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def list_accounts(self) -> list[Account]:
        return [a.model_copy(deep=True) for a in self._accounts.values()]

    async def insert_account(self, account: Account) -> str:
        if account.id in self._accounts:
            raise DuplicateError(f"Account already exists: {account.id}")
        self._accounts[account.id] = account.model_copy(deep=True)
        return account.id

    async def update_account(self, account_id: str, fields: dict[str, Any]) -> Account:
        current = self._accounts.get(account_id)
        if current is None:
            raise NotFoundError(f"Account not found: {account_id}")
        updated = Account.model_validate({**current.model_dump(), **fields, "id": account_id})
        self._accounts[account_id] = updated
        return updated.model_copy(deep=True)

    async def delete_account(self, account_id: str) -> bool:
        return self._accounts.pop(account_id, None) is not None

    async def adjust_balance(self, account_id: str, delta: Decimal) -> Decimal:
        # No await between read and write: atomic under the event loop.
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        account.balance = account.balance + delta
        return account.balance

    # Transactions

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def list_transactions(
        self,
        account_id: Optional[str] = None,
        recurring_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        results = []
        for tx in self._transactions.values():
            if account_id and account_id not in (tx.account_id, tx.to_account_id):
                continue
            if recurring_id and tx.recurring_id != recurring_id:
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            results.append(tx.model_copy(deep=True))
        results.sort(key=lambda t: (t.date, t.created_at))
        return results

    async def insert_transaction(self, transaction: Transaction) -> str:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.id

    async def delete_transaction(self, transaction_id: str) -> bool:
        return self._transactions.pop(transaction_id, None) is not None

    # Ledger entries

    async def list_entries(
        self,
        transaction_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._entries.values()
            if (transaction_id is None or entry.transaction_id == transaction_id)
            and (account_id is None or entry.account_id == account_id)
        ]

    async def insert_entry(self, entry: LedgerEntry) -> str:
        if entry.id in self._entries:
            raise DuplicateError(f"Ledger entry already exists: {entry.id}")
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry.id

    async def delete_entry(self, entry_id: str) -> bool:
        return self._entries.pop(entry_id, None) is not None

    async def delete_entries(self, transaction_id: str) -> int:
        doomed = [
            entry_id
            for entry_id, entry in self._entries.items()
            if entry.transaction_id == transaction_id
        ]
        for entry_id in doomed:
            del self._entries[entry_id]
        return len(doomed)

    # Recurring rules

    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        return [
            rule.model_copy(deep=True)
            for rule in self._rules.values()
            if rule.is_active or not active_only
        ]

    async def insert_rule(self, rule: RecurringRule) -> str:
        if rule.id in self._rules:
            raise DuplicateError(f"Recurring rule already exists: {rule.id}")
        self._rules[rule.id] = rule.model_copy(deep=True)
        return rule.id

    async def update_rule(self, rule_id: str, fields: dict[str, Any]) -> RecurringRule:
        current = self._rules.get(rule_id)
        if current is None:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        updated = RecurringRule.model_validate({**current.model_dump(), **fields, "id": rule_id})
        self._rules[rule_id] = updated
        return updated.model_copy(deep=True)

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
