"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the cloud document store because:
1. Users can view their accounts and ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the ledger engine rolls back its own partial writes)
- Limited query capabilities (we filter in Python)
- No atomic increment: balance adjustments are serialized per account
  inside this process

One worksheet per record type, one record per row, header row first.
List-valued fields are JSON-serialized into a single cell.
"""

import json
from datetime import date
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finledger.concurrency import KeyedLock
from finledger.config import GoogleSheetsSettings, get_settings
from finledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finledger.models.ledger import (
    Account,
    LedgerEntry,
    RecurringRule,
    Transaction,
)
from finledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)


ACCOUNT_COLUMNS = [
    "id",
    "name",
    "balance",
    "currency",
    "created_at",
    "type",
    "interest_rate",
    "interest_frequency",
    "last_interest_date",
    "credit_limit",
    "billing_day",
    "payment_due_day",
    "last_billing_date",
    "loan_principal",
    "loan_outstanding",
    "loan_installment",
    "last_payment_date",
    "fd_principal",
    "fd_start_date",
    "fd_maturity_date",
    "fd_matured",
]

TRANSACTION_COLUMNS = [
    "id",
    "type",
    "amount",
    "account_id",
    "to_account_id",
    "category_id",
    "date",
    "notes",
    "tags",
    "friend_id",
    "recurring_id",
    "is_auto_generated",
    "created_at",
]

LEDGER_COLUMNS = [
    "id",
    "transaction_id",
    "account_id",
    "debit",
    "credit",
    "date",
    "type",
    "description",
    "created_at",
]

RECURRING_COLUMNS = [
    "id",
    "name",
    "type",
    "amount",
    "account_id",
    "to_account_id",
    "category_id",
    "frequency",
    "start_date",
    "end_date",
    "next_date",
    "last_processed",
    "is_active",
    "notes",
    "tags",
    "friend_id",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

JSON_COLUMNS = {"tags"}

# Missing or duplicate records are answers, not transient failures
sheets_retry = retry(
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)

logger = structlog.get_logger()


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @sheets_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


ModelT = TypeVar("ModelT", bound=BaseModel)


class SheetTable(Generic[ModelT]):
    """
    One worksheet holding one record type.

    Row 1 is the header; the record ID is always the first column.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        columns: list[str],
        model: type[ModelT],
    ):
        self._client = client
        self._title = title
        self._columns = columns
        self._model = model

    def sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, self._columns)

    def to_row(self, record: ModelT) -> list:
        data = record.model_dump(mode="json")
        row = []
        for column in self._columns:
            value = data.get(column)
            if column in JSON_COLUMNS:
                row.append("" if value is None else json.dumps(value))
            elif value is None:
                row.append("")
            else:
                row.append(str(value))
        return row

    def from_row(self, row: list) -> ModelT:
        # Handle missing columns gracefully
        def safe_get(index: int) -> str:
            try:
                return row[index]
            except IndexError:
                return ""

        data: dict[str, Any] = {}
        for index, column in enumerate(self._columns):
            raw = safe_get(index)
            if column in JSON_COLUMNS:
                data[column] = json.loads(raw) if raw else None
            else:
                data[column] = raw if raw != "" else None
        # Empty cells fall back to the model default, except for nullable
        # fields where an explicit None matters (e.g. next_date).
        for column in list(data):
            field = self._model.model_fields.get(column)
            if data[column] is None and field is not None and field.default is not None:
                del data[column]
        return self._model.model_validate(data)

    def records(self) -> list[tuple[int, ModelT]]:
        """All parseable records with their 1-based sheet row index."""
        all_rows = self.sheet().get_all_values()
        results = []
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                results.append((idx, self.from_row(row)))
            except Exception as e:
                logger.warning("sheets_row_skipped", sheet=self._title, row=idx, error=str(e))
        return results

    def find(self, record_id: str) -> Optional[tuple[int, ModelT]]:
        all_rows = self.sheet().get_all_values()
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == record_id:
                return idx, self.from_row(row)
        return None

    def append(self, record: ModelT) -> None:
        self.sheet().append_row(self.to_row(record), value_input_option="RAW")

    def replace(self, idx: int, record: ModelT) -> None:
        self.sheet().update(
            range_name=f"A{idx}",
            values=[self.to_row(record)],
            value_input_option="RAW",
        )

    def delete(self, idx: int) -> None:
        self.sheet().delete_rows(idx)


class GoogleSheetsRecordStore(RecordStoreInterface):
    """
    Google Sheets implementation of the record store.

    Every public method wraps gspread failures in StorageError and
    retries transient failures.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        settings = self._client.settings
        self._accounts = SheetTable(
            self._client, settings.accounts_sheet_name, ACCOUNT_COLUMNS, Account
        )
        self._transactions = SheetTable(
            self._client, settings.transactions_sheet_name, TRANSACTION_COLUMNS, Transaction
        )
        self._entries = SheetTable(
            self._client, settings.ledger_sheet_name, LEDGER_COLUMNS, LedgerEntry
        )
        self._rules = SheetTable(
            self._client, settings.recurring_sheet_name, RECURRING_COLUMNS, RecurringRule
        )
        self._balance_locks = KeyedLock()

    # Accounts

    async def get_account(self, account_id: str) -> Optional[Account]:
        try:
            found = self._accounts.find(account_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")

    async def list_accounts(self) -> list[Account]:
        try:
            return [account for _, account in self._accounts.records()]
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")

    @sheets_retry
    async def insert_account(self, account: Account) -> str:
        try:
            if self._accounts.find(account.id):
                raise DuplicateError(f"Account already exists: {account.id}")
            self._accounts.append(account)
            return account.id
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}")

    async def update_account(self, account_id: str, fields: dict[str, Any]) -> Account:
        try:
            found = self._accounts.find(account_id)
            if found is None:
                raise NotFoundError(f"Account not found: {account_id}")
            idx, current = found
            updated = Account.model_validate({**current.model_dump(), **fields, "id": account_id})
            self._accounts.replace(idx, updated)
            return updated
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}")

    async def delete_account(self, account_id: str) -> bool:
        try:
            found = self._accounts.find(account_id)
            if found is None:
                return False
            self._accounts.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete account: {e}")

    async def adjust_balance(self, account_id: str, delta: Decimal) -> Decimal:
        async with self._balance_locks.hold(account_id):
            try:
                found = self._accounts.find(account_id)
                if found is None:
                    raise NotFoundError(f"Account not found: {account_id}")
                idx, account = found
                account.balance = account.balance + delta
                self._accounts.replace(idx, account)
                return account.balance
            except NotFoundError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to adjust balance: {e}")

    # Transactions

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        try:
            found = self._transactions.find(transaction_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(
        self,
        account_id: Optional[str] = None,
        recurring_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        try:
            transactions = []
            for _, tx in self._transactions.records():
                # Apply filters
                if account_id and account_id not in (tx.account_id, tx.to_account_id):
                    continue
                if recurring_id and tx.recurring_id != recurring_id:
                    continue
                if date_from and tx.date < date_from:
                    continue
                if date_to and tx.date > date_to:
                    continue
                transactions.append(tx)
            transactions.sort(key=lambda t: (t.date, t.created_at))
            return transactions
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

    @sheets_retry
    async def insert_transaction(self, transaction: Transaction) -> str:
        try:
            self._transactions.append(transaction)
            return transaction.id
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def delete_transaction(self, transaction_id: str) -> bool:
        try:
            found = self._transactions.find(transaction_id)
            if found is None:
                return False
            self._transactions.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    # Ledger entries

    async def list_entries(
        self,
        transaction_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        try:
            return [
                entry
                for _, entry in self._entries.records()
                if (transaction_id is None or entry.transaction_id == transaction_id)
                and (account_id is None or entry.account_id == account_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list ledger entries: {e}")

    @sheets_retry
    async def insert_entry(self, entry: LedgerEntry) -> str:
        try:
            self._entries.append(entry)
            return entry.id
        except Exception as e:
            raise StorageError(f"Failed to save ledger entry: {e}")

    async def delete_entry(self, entry_id: str) -> bool:
        try:
            found = self._entries.find(entry_id)
            if found is None:
                return False
            self._entries.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete ledger entry: {e}")

    async def delete_entries(self, transaction_id: str) -> int:
        try:
            rows = [
                idx
                for idx, entry in self._entries.records()
                if entry.transaction_id == transaction_id
            ]
            # Bottom-up so earlier deletions don't shift later row indexes
            for idx in sorted(rows, reverse=True):
                self._entries.delete(idx)
            return len(rows)
        except Exception as e:
            raise StorageError(f"Failed to delete ledger entries: {e}")

    # Recurring rules

    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        try:
            found = self._rules.find(rule_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get recurring rule: {e}")

    async def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        try:
            return [
                rule
                for _, rule in self._rules.records()
                if rule.is_active or not active_only
            ]
        except Exception as e:
            raise StorageError(f"Failed to list recurring rules: {e}")

    @sheets_retry
    async def insert_rule(self, rule: RecurringRule) -> str:
        try:
            self._rules.append(rule)
            return rule.id
        except Exception as e:
            raise StorageError(f"Failed to save recurring rule: {e}")

    async def update_rule(self, rule_id: str, fields: dict[str, Any]) -> RecurringRule:
        try:
            found = self._rules.find(rule_id)
            if found is None:
                raise NotFoundError(f"Recurring rule not found: {rule_id}")
            idx, current = found
            updated = RecurringRule.model_validate({**current.model_dump(), **fields, "id": rule_id})
            self._rules.replace(idx, updated)
            return updated
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update recurring rule: {e}")

    async def delete_rule(self, rule_id: str) -> bool:
        try:
            found = self._rules.find(rule_id)
            if found is None:
                return False
            self._rules.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete recurring rule: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception as e:
                    logger.warning("audit_row_skipped", error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_event_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._events() if e.correlation_id == correlation_id]
            # Sort chronologically
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._events()
            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
