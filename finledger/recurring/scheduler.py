"""
Recurring Transaction Scheduler

Turns recurring rules into concrete transactions.

FLOW (per due rule):
1. Re-read the rule under its lock (another caller may have advanced it)
2. Deactivate it if its end date passed before the next run
3. Insert a transaction dated next_date
4. Post it through the ledger engine
5. Advance next_date by one frequency step, record last_processed

CRITICAL BOUNDARIES:
- A rule is advanced by exactly ONE period per call, however far
  behind it is. Callers that need catch-up call again.
- One failing rule never stops the batch. Failures are reported in the
  ProcessingReport alongside the successes.
- A rule whose run fails part way is left due: its transaction (and any
  postings) are removed again so a retry cannot double-post.
"""

from datetime import date
from typing import Optional, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger, create_correlation_id
from finledger.concurrency import KeyedLock
from finledger.config import get_settings
from finledger.exceptions import LedgerError, ProcessingError
from finledger.ledger import LedgerEngine
from finledger.models.ledger import (
    ProcessingReport,
    RecurringRule,
    RuleFailure,
    Transaction,
    TransactionType,
)
from finledger.recurring.schedule import calculate_next_date, parse_date
from finledger.services.storage import NotFoundError, RecordStoreInterface
from finledger.validation import TransactionValidator


class RecurringScheduler:
    """
    Materializes recurring rules through the ledger engine.

    Processing is serialized per rule id, so concurrent process_due /
    process_single calls can never materialize the same period twice.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        engine: LedgerEngine,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        auto_tags: Optional[list[str]] = None,
    ):
        self._store = store
        self._engine = engine
        self._audit_logger = audit_logger
        self._validator = validator or TransactionValidator()
        self._auto_tags = (
            auto_tags if auto_tags is not None
            else get_settings().ledger.auto_generated_tags_list
        )
        self._rule_locks = KeyedLock()
        self._logger = structlog.get_logger()

    # -------------------------------------------------------------------------
    # Rule lifecycle
    # -------------------------------------------------------------------------

    async def create_rule(
        self,
        rule: RecurringRule,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        """Validate and store a new rule (active, next_date = start_date)."""
        self._validator.ensure_valid_rule(rule)
        await self._store.insert_rule(rule)
        if self._audit_logger:
            await self._audit_logger.log_rule_created(
                rule_id=rule.id,
                name=rule.name,
                frequency=rule.frequency.value,
                correlation_id=correlation_id,
            )
        return rule

    async def pause_rule(self, rule_id: str, correlation_id: Optional[UUID] = None) -> RecurringRule:
        return await self._set_active(rule_id, False, correlation_id)

    async def resume_rule(self, rule_id: str, correlation_id: Optional[UUID] = None) -> RecurringRule:
        return await self._set_active(rule_id, True, correlation_id)

    async def _set_active(
        self,
        rule_id: str,
        is_active: bool,
        correlation_id: Optional[UUID],
    ) -> RecurringRule:
        async with self._rule_locks.hold(rule_id):
            rule = await self._store.update_rule(rule_id, {"is_active": is_active})
        if self._audit_logger:
            await self._audit_logger.log_rule_toggled(
                rule_id=rule_id,
                is_active=is_active,
                correlation_id=correlation_id,
            )
        return rule

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_due(
        self,
        as_of: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ProcessingReport:
        """
        Materialize every active rule that is due on or before `as_of`.

        Args:
            as_of: Reference date (default: today)

        Returns:
            ProcessingReport with created transactions, per-rule failures,
            deactivated and skipped rule ids
        """
        as_of = parse_date(as_of) if as_of else date.today()
        correlation_id = correlation_id or create_correlation_id()
        report = ProcessingReport(as_of=as_of)

        rules = await self._store.list_rules(active_only=True)

        for rule in rules:
            try:
                outcome, transaction = await self._process_if_due(rule.id, as_of, correlation_id)
            except Exception as e:
                await self._record_failure(report, rule, e, correlation_id)
                continue

            if outcome == "created":
                report.created.append(transaction)
            elif outcome == "deactivated":
                report.deactivated.append(rule.id)
            else:
                report.skipped.append(rule.id)

        self._logger.info(
            "recurring_batch_completed",
            as_of=as_of.isoformat(),
            created=report.created_count,
            failed=len(report.failures),
            deactivated=len(report.deactivated),
        )
        if self._audit_logger:
            await self._audit_logger.log_batch_completed(
                as_of=as_of,
                created_count=report.created_count,
                failure_count=len(report.failures),
                deactivated_count=len(report.deactivated),
                correlation_id=correlation_id,
            )
        return report

    async def _record_failure(
        self,
        report: ProcessingReport,
        rule: RecurringRule,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        failure = RuleFailure(
            rule_id=rule.id,
            rule_name=rule.name,
            error_type=type(error).__name__,
            message=str(error),
        )
        report.failures.append(failure)
        self._logger.error(
            "recurring_rule_failed",
            rule_id=rule.id,
            rule_name=rule.name,
            error_type=failure.error_type,
            error=failure.message,
        )
        if self._audit_logger:
            await self._audit_logger.log_recurring_failed(
                rule_id=rule.id,
                rule_name=rule.name,
                error_type=failure.error_type,
                error_message=failure.message,
                correlation_id=correlation_id,
            )

    async def _process_if_due(
        self,
        rule_id: str,
        as_of: date,
        correlation_id: UUID,
    ) -> tuple[str, Optional[Transaction]]:
        """Returns ("created" | "deactivated" | "skipped", transaction)."""
        async with self._rule_locks.hold(rule_id):
            rule = await self._store.get_rule(rule_id)
            if rule is None:
                self._logger.warning("recurring_rule_missing", rule_id=rule_id)
                return "skipped", None

            if not rule.is_due(as_of):
                return "skipped", None

            if rule.is_expired():
                await self._store.update_rule(rule.id, {"is_active": False})
                self._logger.info(
                    "recurring_rule_deactivated",
                    rule_id=rule.id,
                    end_date=rule.end_date.isoformat(),
                    next_date=rule.next_date.isoformat(),
                )
                if self._audit_logger:
                    await self._audit_logger.log_recurring_deactivated(
                        rule_id=rule.id,
                        end_date=rule.end_date,
                        correlation_id=correlation_id,
                    )
                return "deactivated", None

            due_date = rule.next_date
            transaction = await self._materialize(rule, due_date, correlation_id)
            next_date = calculate_next_date(due_date, rule.frequency)
            await self._advance(rule, transaction, next_date, as_of, correlation_id)

        await self._log_materialized(rule, transaction, due_date, next_date, correlation_id)
        return "created", transaction

    async def process_single(
        self,
        rule: RecurringRule,
        on_date: Optional[Union[date, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Materialize a rule right now, ignoring its next_date ("run now").

        The schedule still advances one step, counted from `on_date`.

        Args:
            rule: The rule to run
            on_date: Transaction date (default: today)
        """
        on_date = parse_date(on_date) if on_date else date.today()
        correlation_id = correlation_id or create_correlation_id()

        async with self._rule_locks.hold(rule.id):
            transaction = await self._materialize(rule, on_date, correlation_id)
            next_date = calculate_next_date(on_date, rule.frequency)
            await self._advance(rule, transaction, next_date, on_date, correlation_id)

        await self._log_materialized(rule, transaction, on_date, next_date, correlation_id)
        return transaction

    async def _materialize(
        self,
        rule: RecurringRule,
        on_date: date,
        correlation_id: UUID,
    ) -> Transaction:
        """Insert the rule's transaction for `on_date` and post it."""
        self._validator.ensure_valid_rule(rule)

        is_transfer = rule.type == TransactionType.TRANSFER
        transaction = Transaction(
            type=rule.type,
            amount=rule.amount,
            account_id=rule.account_id,
            to_account_id=rule.to_account_id if is_transfer else None,
            category_id=None if is_transfer else rule.category_id,
            date=on_date,
            notes=f"{rule.notes or rule.name} (Auto-generated)",
            tags=list(self._auto_tags) if rule.tags is None else list(rule.tags),
            friend_id=rule.friend_id,
            recurring_id=rule.id,
            is_auto_generated=True,
        )

        try:
            await self._store.insert_transaction(transaction)
        except Exception as e:
            raise ProcessingError(rule.id, f"Failed to save transaction: {e}") from e

        try:
            await self._engine.create_entries(transaction, correlation_id)
        except Exception as e:
            await self._discard(transaction, correlation_id)
            if isinstance(e, (LedgerError, NotFoundError)):
                raise
            raise ProcessingError(rule.id, f"Failed to post transaction: {e}") from e

        return transaction

    async def _advance(
        self,
        rule: RecurringRule,
        transaction: Transaction,
        next_date: date,
        last_processed: date,
        correlation_id: UUID,
    ) -> None:
        try:
            await self._store.update_rule(
                rule.id,
                {"next_date": next_date, "last_processed": last_processed},
            )
        except Exception as e:
            await self._discard(transaction, correlation_id)
            raise ProcessingError(rule.id, f"Failed to advance schedule: {e}") from e

    async def _discard(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        """Remove a transaction created by a run that did not complete."""
        try:
            await self._engine.reverse_entries(transaction, correlation_id)
            await self._store.delete_transaction(transaction.id)
        except Exception as e:
            self._logger.error(
                "recurring_cleanup_failed",
                transaction_id=transaction.id,
                rule_id=transaction.recurring_id,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="discard_transaction",
                    error_message=str(e),
                    entity_type="transaction",
                    entity_id=transaction.id,
                    correlation_id=correlation_id,
                )

    async def _log_materialized(
        self,
        rule: RecurringRule,
        transaction: Transaction,
        due_date: date,
        next_date: date,
        correlation_id: UUID,
    ) -> None:
        self._logger.info(
            "recurring_rule_materialized",
            rule_id=rule.id,
            transaction_id=transaction.id,
            due_date=due_date.isoformat(),
            next_date=next_date.isoformat(),
        )
        if self._audit_logger:
            await self._audit_logger.log_recurring_materialized(
                rule_id=rule.id,
                transaction_id=transaction.id,
                due_date=due_date,
                next_date=next_date,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_transactions_from_rule(self, rule_id: str) -> list[Transaction]:
        """All transactions generated by a rule, oldest first."""
        return await self._store.list_transactions(recurring_id=rule_id)

    async def count_transactions_from_rule(self, rule_id: str) -> int:
        return len(await self.get_transactions_from_rule(rule_id))
