"""Tests for the recurring scheduler."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from finledger.exceptions import ValidationError
from finledger.ledger import LedgerEngine
from finledger.models.audit import AuditEventType
from finledger.models.ledger import Frequency, RecurringRule, TransactionType
from finledger.recurring import RecurringScheduler
from finledger.services.storage import (
    InMemoryRecordStore,
    NotFoundError,
    StorageError,
)


def rent_rule(**overrides) -> RecurringRule:
    fields = dict(
        name="Rent",
        type=TransactionType.EXPENSE,
        amount=Decimal("100"),
        account_id="acc-wallet",
        category_id="cat-rent",
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 1),
    )
    fields.update(overrides)
    return RecurringRule(**fields)


async def balance_of(store, account_id: str) -> Decimal:
    return (await store.get_account(account_id)).balance


class TestCreateRule:
    """Rule creation."""

    @pytest.mark.asyncio
    async def test_create_stores_active_rule(self, scheduler, store):
        rule = await scheduler.create_rule(rent_rule())
        stored = await store.get_rule(rule.id)
        assert stored.is_active is True
        assert stored.next_date == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_invalid_rule_not_stored(self, scheduler, store):
        bad = rent_rule(
            type=TransactionType.TRANSFER,
            category_id=None,
            to_account_id="acc-wallet",
        )
        with pytest.raises(ValidationError, match="same account"):
            await scheduler.create_rule(bad)
        assert await store.list_rules() == []


class TestProcessDue:
    """Batch materialization."""

    @pytest.mark.asyncio
    async def test_due_rule_materializes_once(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule())

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.created_count == 1
        assert report.failures == []
        tx = report.created[0]
        assert tx.date == date(2024, 1, 1)
        assert tx.recurring_id == rule.id
        assert tx.is_auto_generated is True
        assert tx.notes == "Rent (Auto-generated)"
        assert tx.tags == ["auto-generated", "recurring"]
        assert tx.category_id == "cat-rent"
        assert tx.to_account_id is None

        stored = await store.get_rule(rule.id)
        assert stored.next_date == date(2024, 2, 1)
        assert stored.last_processed == date(2024, 1, 15)
        assert await balance_of(store, "acc-wallet") == Decimal("400")
        assert len(await store.list_entries(transaction_id=tx.id)) == 2

    @pytest.mark.asyncio
    async def test_second_run_same_day_creates_nothing(self, scheduler, accounts):
        rule = await scheduler.create_rule(rent_rule())
        await scheduler.process_due(date(2024, 1, 15))

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.created_count == 0
        assert report.skipped == [rule.id]

    @pytest.mark.asyncio
    async def test_catch_up_is_one_period_per_call(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule())

        first = await scheduler.process_due(date(2024, 4, 15))
        second = await scheduler.process_due(date(2024, 4, 15))

        assert [tx.date for tx in first.created] == [date(2024, 1, 1)]
        assert [tx.date for tx in second.created] == [date(2024, 2, 1)]
        assert (await store.get_rule(rule.id)).next_date == date(2024, 3, 1)

    @pytest.mark.asyncio
    async def test_not_yet_due_rule_skipped(self, scheduler, accounts):
        rule = await scheduler.create_rule(rent_rule(start_date=date(2024, 2, 1)))
        report = await scheduler.process_due(date(2024, 1, 31))
        assert report.created_count == 0
        assert report.skipped == [rule.id]

    @pytest.mark.asyncio
    async def test_rule_past_end_date_deactivated(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule(
            start_date=date(2023, 12, 1),
            end_date=date(2024, 1, 1),
            next_date=date(2024, 2, 1),
        ))

        report = await scheduler.process_due(date(2024, 2, 15))

        assert report.created_count == 0
        assert report.deactivated == [rule.id]
        assert (await store.get_rule(rule.id)).is_active is False
        assert await scheduler.count_transactions_from_rule(rule.id) == 0
        assert await balance_of(store, "acc-wallet") == Decimal("500")

    @pytest.mark.asyncio
    async def test_end_date_on_due_date_still_runs(self, scheduler, accounts):
        await scheduler.create_rule(rent_rule(
            end_date=date(2024, 2, 1),
            next_date=date(2024, 2, 1),
        ))
        report = await scheduler.process_due(date(2024, 2, 1))
        assert report.created_count == 1

    @pytest.mark.asyncio
    async def test_transfer_rule(self, scheduler, store, accounts):
        await scheduler.create_rule(rent_rule(
            name="Savings sweep",
            type=TransactionType.TRANSFER,
            category_id=None,
            to_account_id="acc-savings",
            frequency=Frequency.WEEKLY,
            tags=["savings"],
        ))

        report = await scheduler.process_due(date(2024, 1, 1))

        tx = report.created[0]
        assert tx.to_account_id == "acc-savings"
        assert tx.category_id is None
        assert tx.tags == ["savings"]
        assert await balance_of(store, "acc-savings") == Decimal("100")

    @pytest.mark.asyncio
    async def test_explicitly_empty_tags_are_kept(self, scheduler, accounts):
        await scheduler.create_rule(rent_rule(tags=[]))

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.created[0].tags == []

    @pytest.mark.asyncio
    async def test_failing_rule_does_not_stop_batch(self, scheduler, store, audit_storage, accounts):
        good = await scheduler.create_rule(rent_rule())
        bad = await scheduler.create_rule(rent_rule(name="Ghost", account_id="acc-ghost"))

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.created_count == 1
        assert report.created[0].recurring_id == good.id
        assert report.has_failures is True
        failure = report.failures[0]
        assert failure.rule_id == bad.id
        assert failure.rule_name == "Ghost"
        assert failure.error_type == "NotFoundError"

        # The failed rule is left due and leaves no transaction behind
        assert (await store.get_rule(bad.id)).next_date == date(2024, 1, 1)
        assert await scheduler.count_transactions_from_rule(bad.id) == 0
        assert any(
            e.event_type == AuditEventType.RECURRING_FAILED and e.entity_id == bad.id
            for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_invalid_stored_rule_reported(self, scheduler, store, accounts):
        # Bypass create_rule validation, as a hand-edited sheet row would
        broken = rent_rule(category_id=None)
        await store.insert_rule(broken)

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.created_count == 0
        assert report.failures[0].error_type == "ValidationError"

    @pytest.mark.asyncio
    async def test_batch_is_audited(self, scheduler, audit_storage, accounts):
        await scheduler.create_rule(rent_rule())
        await scheduler.process_due(date(2024, 1, 15))
        event_types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.RECURRING_MATERIALIZED in event_types
        assert event_types[-1] == AuditEventType.RECURRING_BATCH_COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_runs_materialize_once(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule())

        reports = await asyncio.gather(
            scheduler.process_due(date(2024, 1, 15)),
            scheduler.process_due(date(2024, 1, 15)),
        )

        assert sum(report.created_count for report in reports) == 1
        assert await scheduler.count_transactions_from_rule(rule.id) == 1
        assert await balance_of(store, "acc-wallet") == Decimal("400")


class FailingRuleUpdateStore(InMemoryRecordStore):
    """Cannot advance schedules."""

    async def update_rule(self, rule_id, fields):
        if "next_date" in fields:
            raise StorageError("sheet unavailable")
        return await super().update_rule(rule_id, fields)


class FailingCleanupStore(FailingRuleUpdateStore):
    """Cannot advance schedules or delete transactions."""

    async def delete_transaction(self, transaction_id):
        raise StorageError("sheet unavailable")


class TestAdvanceFailure:
    """A run that cannot advance its rule is undone."""

    @pytest.mark.asyncio
    async def test_transaction_discarded_when_rule_cannot_advance(self, accounts):
        store = FailingRuleUpdateStore()
        for account in accounts:
            await store.insert_account(account)
        engine = LedgerEngine(store, tolerance=Decimal("0.01"))
        scheduler = RecurringScheduler(store, engine, auto_tags=[])
        rule = await scheduler.create_rule(rent_rule())

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.created_count == 0
        assert report.failures[0].error_type == "ProcessingError"
        assert await store.list_transactions() == []
        assert await store.list_entries() == []
        assert await balance_of(store, "acc-wallet") == Decimal("500")
        assert (await store.get_rule(rule.id)).next_date == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_failed_cleanup_is_audited(self, audit_logger, audit_storage, accounts):
        store = FailingCleanupStore()
        for account in accounts:
            await store.insert_account(account)
        engine = LedgerEngine(store, tolerance=Decimal("0.01"))
        scheduler = RecurringScheduler(store, engine, audit_logger=audit_logger, auto_tags=[])
        await scheduler.create_rule(rent_rule())

        report = await scheduler.process_due(date(2024, 1, 15))

        assert report.failures[0].error_type == "ProcessingError"
        # Postings are reversed even though the record could not be removed
        assert await store.list_entries() == []
        assert await balance_of(store, "acc-wallet") == Decimal("500")
        storage_errors = [
            e for e in audit_storage.events if e.event_type == AuditEventType.STORAGE_ERROR
        ]
        assert [e.details["operation"] for e in storage_errors] == ["discard_transaction"]


class TestProcessSingle:
    """Run now."""

    @pytest.mark.asyncio
    async def test_run_now_ignores_schedule(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule(start_date=date(2024, 6, 1)))

        tx = await scheduler.process_single(rule, date(2024, 3, 10))

        assert tx.date == date(2024, 3, 10)
        stored = await store.get_rule(rule.id)
        assert stored.next_date == date(2024, 4, 10)
        assert stored.last_processed == date(2024, 3, 10)
        assert await balance_of(store, "acc-wallet") == Decimal("400")

    @pytest.mark.asyncio
    async def test_run_now_propagates_errors(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule(account_id="acc-ghost"))
        with pytest.raises(NotFoundError):
            await scheduler.process_single(rule, date(2024, 3, 10))
        assert await scheduler.count_transactions_from_rule(rule.id) == 0


class TestPauseResume:
    """Toggling rules."""

    @pytest.mark.asyncio
    async def test_paused_rule_is_not_processed(self, scheduler, store, accounts):
        rule = await scheduler.create_rule(rent_rule())
        paused = await scheduler.pause_rule(rule.id)
        assert paused.is_active is False

        report = await scheduler.process_due(date(2024, 1, 15))
        assert report.created_count == 0
        assert rule.id not in report.skipped

        await scheduler.resume_rule(rule.id)
        report = await scheduler.process_due(date(2024, 1, 15))
        assert report.created_count == 1

    @pytest.mark.asyncio
    async def test_toggles_are_audited(self, scheduler, audit_storage):
        rule = await scheduler.create_rule(rent_rule())
        await scheduler.pause_rule(rule.id)
        await scheduler.resume_rule(rule.id)
        event_types = [e.event_type for e in audit_storage.events]
        assert event_types[-2:] == [
            AuditEventType.RECURRING_PAUSED,
            AuditEventType.RECURRING_RESUMED,
        ]


class TestRuleHistory:
    @pytest.mark.asyncio
    async def test_transactions_from_rule(self, scheduler, accounts):
        rule = await scheduler.create_rule(rent_rule())
        other = await scheduler.create_rule(rent_rule(name="Gym", category_id="cat-gym"))
        await scheduler.process_due(date(2024, 2, 15))
        await scheduler.process_due(date(2024, 2, 15))

        history = await scheduler.get_transactions_from_rule(rule.id)
        assert [tx.date for tx in history] == [date(2024, 1, 1), date(2024, 2, 1)]
        assert await scheduler.count_transactions_from_rule(other.id) == 2
