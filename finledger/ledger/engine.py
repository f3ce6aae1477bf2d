"""
Double-Entry Ledger Engine

Implements double-entry bookkeeping for every recorded transaction:
- Every transaction posts exactly two ledger entries (one debit, one credit)
- Total debits always equal total credits
- Account balances move only through this engine

GUARANTEES:
- Nothing is written for a transaction that fails validation
- Balance updates are serialized per account
- A store failure part way through posting rolls back what this
  engine already wrote, then re-raises
- Reversal restores balances before deleting entries; a failed
  reversal is undone and can be retried
- Reversing a transaction whose entries are already gone is a no-op
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from finledger.audit import AuditLogger
from finledger.concurrency import KeyedLock
from finledger.config import get_settings
from finledger.exceptions import ConsistencyError
from finledger.ledger.posting_rules import (
    PostingRule,
    entry_totals,
    get_posting_rule,
    is_balanced,
)
from finledger.models.ledger import LedgerEntry, Transaction
from finledger.services.storage import NotFoundError, RecordStoreInterface
from finledger.validation import TransactionValidator


class LedgerEngine:
    """
    Posts and reverses ledger entries against an injected record store.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        tolerance: Optional[Decimal] = None,
    ):
        """
        Args:
            store: Record store holding accounts, transactions and entries
            audit_logger: Optional audit trail
            validator: Transaction validator (default: TransactionValidator())
            tolerance: Rounding tolerance for balance checks
                       (default: settings.ledger.balance_tolerance)
        """
        self._store = store
        self._audit_logger = audit_logger
        self._validator = validator or TransactionValidator()
        self._tolerance = (
            tolerance if tolerance is not None
            else get_settings().ledger.balance_tolerance
        )
        self._balance_locks = KeyedLock()
        self._transaction_locks = KeyedLock()
        self._logger = structlog.get_logger()

    @property
    def tolerance(self) -> Decimal:
        return self._tolerance

    async def _require_accounts(self, account_ids: list[str]) -> None:
        for account_id in account_ids:
            if await self._store.get_account(account_id) is None:
                raise NotFoundError(f"Account not found: {account_id}")

    async def create_entries(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        """
        Post a persisted transaction to the ledger.

        Returns:
            The two ledger entries written (debit first)

        Raises:
            ValidationError: Unknown type, non-positive amount, or a
                missing account/category; nothing is written
            NotFoundError: A referenced account does not exist; nothing is written
            StorageError: A store write failed; partial writes are rolled back
        """
        self._validator.ensure_valid_transaction(transaction)
        rule = get_posting_rule(transaction.type)
        await self._require_accounts(rule.touched_accounts(transaction))

        entries = rule.build_entries(transaction)
        if not is_balanced(entries):
            raise ConsistencyError(
                transaction.id,
                f"Posting rule for {rule.transaction_type.value} produced unbalanced entries",
            )

        written: list[LedgerEntry] = []
        applied: list[tuple[str, Decimal]] = []
        try:
            for entry in entries:
                await self._store.insert_entry(entry)
                written.append(entry)

            async with self._balance_locks.hold(*rule.touched_accounts(transaction)):
                for account_id, delta in rule.balance_deltas(transaction):
                    await self._store.adjust_balance(account_id, delta)
                    applied.append((account_id, delta))
        except Exception as e:
            self._logger.error(
                "ledger_posting_failed",
                transaction_id=transaction.id,
                error=str(e),
                entries_written=len(written),
                deltas_applied=len(applied),
            )
            await self._rollback(transaction, written, applied)
            await self._report_storage_error("create_entries", transaction, e, correlation_id)
            raise

        self._logger.info(
            "ledger_entries_created",
            transaction_id=transaction.id,
            type=rule.transaction_type.value,
            amount=str(transaction.amount),
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_posted(
                transaction_id=transaction.id,
                transaction_type=rule.transaction_type.value,
                amount=transaction.amount,
                entry_count=len(entries),
                correlation_id=correlation_id,
            )
        return entries

    async def _rollback(
        self,
        transaction: Transaction,
        written: list[LedgerEntry],
        applied: list[tuple[str, Decimal]],
    ) -> None:
        """Undo a partially applied posting, best effort."""
        for entry in written:
            try:
                await self._store.delete_entry(entry.id)
            except Exception as e:
                self._logger.error(
                    "ledger_rollback_failed",
                    transaction_id=transaction.id,
                    entry_id=entry.id,
                    error=str(e),
                )
        await self._undo_deltas(transaction, applied)

    async def _undo_deltas(
        self,
        transaction: Transaction,
        applied: list[tuple[str, Decimal]],
    ) -> None:
        """Apply the opposite of each recorded delta, newest first."""
        if not applied:
            return
        async with self._balance_locks.hold(*(account_id for account_id, _ in applied)):
            for account_id, delta in reversed(applied):
                try:
                    await self._store.adjust_balance(account_id, -delta)
                except Exception as e:
                    self._logger.error(
                        "ledger_rollback_failed",
                        transaction_id=transaction.id,
                        account_id=account_id,
                        error=str(e),
                    )

    async def _report_storage_error(
        self,
        operation: str,
        transaction: Transaction,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                entity_type="transaction",
                entity_id=transaction.id,
                correlation_id=correlation_id,
            )

    async def reverse_entries(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Undo a transaction's balance deltas and remove its ledger entries.

        Call this BEFORE deleting the transaction record.

        Balances are restored first and the entries deleted last, so a
        failed reversal leaves the entries in place and can be retried.

        Returns:
            True if postings were reversed, False if no entries remained
            (already reversed, or never posted)

        Raises:
            StorageError: A store write failed; balances and entries are
                put back the way they were
        """
        rule = get_posting_rule(transaction.type)

        async with self._transaction_locks.hold(transaction.id):
            entries = await self._store.list_entries(transaction_id=transaction.id)
            if not entries:
                self._logger.warning(
                    "ledger_reversal_skipped",
                    transaction_id=transaction.id,
                    reason="no ledger entries",
                )
                if self._audit_logger:
                    await self._audit_logger.log_reversal_skipped(
                        transaction_id=transaction.id,
                        correlation_id=correlation_id,
                    )
                return False

            applied: list[tuple[str, Decimal]] = []
            try:
                await self._apply_reversal(rule, transaction, applied)
                await self._store.delete_entries(transaction.id)
            except Exception as e:
                self._logger.error(
                    "ledger_reversal_failed",
                    transaction_id=transaction.id,
                    error=str(e),
                    deltas_applied=len(applied),
                )
                await self._undo_deltas(transaction, applied)
                await self._restore_entries(transaction, entries)
                await self._report_storage_error("reverse_entries", transaction, e, correlation_id)
                raise

        self._logger.info(
            "ledger_entries_reversed",
            transaction_id=transaction.id,
            type=rule.transaction_type.value,
            amount=str(transaction.amount),
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_reversed(
                transaction_id=transaction.id,
                transaction_type=rule.transaction_type.value,
                amount=transaction.amount,
                correlation_id=correlation_id,
            )
        return True

    async def _apply_reversal(
        self,
        rule: PostingRule,
        transaction: Transaction,
        applied: list[tuple[str, Decimal]],
    ) -> None:
        async with self._balance_locks.hold(*rule.touched_accounts(transaction)):
            for account_id, delta in rule.reversal_deltas(transaction):
                try:
                    await self._store.adjust_balance(account_id, delta)
                except NotFoundError:
                    self._logger.warning(
                        "ledger_account_missing",
                        transaction_id=transaction.id,
                        account_id=account_id,
                        action="skipping balance reversal",
                    )
                    continue
                applied.append((account_id, delta))

    async def _restore_entries(
        self,
        transaction: Transaction,
        entries: list[LedgerEntry],
    ) -> None:
        """Re-insert entries a failed bulk delete already removed, best effort."""
        try:
            remaining = {
                entry.id
                for entry in await self._store.list_entries(transaction_id=transaction.id)
            }
            for entry in entries:
                if entry.id not in remaining:
                    await self._store.insert_entry(entry)
        except Exception as e:
            self._logger.error(
                "ledger_rollback_failed",
                transaction_id=transaction.id,
                error=str(e),
            )

    async def validate_balance(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Check that a transaction's entries balance.

        Returns:
            True if |total debits - total credits| is below the tolerance
        """
        entries = await self._store.list_entries(transaction_id=transaction_id)
        balanced = is_balanced(entries, self._tolerance)

        if not balanced:
            total_debits, total_credits = entry_totals(entries)
            self._logger.error(
                "ledger_imbalance",
                transaction_id=transaction_id,
                total_debits=str(total_debits),
                total_credits=str(total_credits),
                difference=str(total_debits - total_credits),
            )
            if self._audit_logger:
                await self._audit_logger.log_balance_check_failed(
                    transaction_id=transaction_id,
                    total_debits=total_debits,
                    total_credits=total_credits,
                    correlation_id=correlation_id,
                )
        return balanced

    async def assert_balanced(self, transaction_id: str) -> None:
        """validate_balance, but raise ConsistencyError when unbalanced."""
        if not await self.validate_balance(transaction_id):
            raise ConsistencyError(
                transaction_id,
                f"Ledger imbalance for transaction {transaction_id}",
            )

    async def get_account_balance_from_ledger(self, account_id: str) -> Decimal:
        """
        Recompute a balance from the ledger alone: sum of (debit - credit)
        over every entry touching the account. Ignores Account.balance.
        """
        entries = await self._store.list_entries(account_id=account_id)
        return sum((entry.signed_amount for entry in entries), Decimal("0"))

    async def check_account_drift(
        self,
        account_id: str,
        opening_balance: Decimal = Decimal("0"),
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Compare the cached balance against the ledger.

        Args:
            opening_balance: Balance the account had before its first posting

        Returns:
            cached balance - opening balance - ledger balance (0 when consistent)
        """
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        ledger_balance = await self.get_account_balance_from_ledger(account_id)
        drift = account.balance - opening_balance - ledger_balance

        if abs(drift) >= self._tolerance:
            self._logger.warning(
                "ledger_balance_drift",
                account_id=account_id,
                cached_balance=str(account.balance),
                ledger_balance=str(ledger_balance),
                drift=str(drift),
            )
            if self._audit_logger:
                await self._audit_logger.log_balance_drift(
                    account_id=account_id,
                    cached_balance=account.balance,
                    ledger_balance=ledger_balance + opening_balance,
                    correlation_id=correlation_id,
                )
        return drift
