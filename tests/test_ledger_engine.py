"""Tests for the double-entry ledger engine."""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from finledger.exceptions import ConsistencyError, ValidationError
from finledger.ledger import LedgerEngine
from finledger.models.audit import AuditEventType
from finledger.models.ledger import LedgerEntry, Transaction, TransactionType
from finledger.services.storage import (
    InMemoryRecordStore,
    NotFoundError,
    StorageError,
)


def expense(amount: str = "100", account_id: str = "acc-wallet", **overrides) -> Transaction:
    fields = dict(
        type=TransactionType.EXPENSE,
        amount=Decimal(amount),
        account_id=account_id,
        category_id="cat-food",
        date=date(2024, 1, 15),
    )
    fields.update(overrides)
    return Transaction(**fields)


def transfer(amount: str = "50") -> Transaction:
    return Transaction(
        type=TransactionType.TRANSFER,
        amount=Decimal(amount),
        account_id="acc-wallet",
        to_account_id="acc-savings",
        date=date(2024, 1, 16),
    )


async def balance_of(store, account_id: str) -> Decimal:
    return (await store.get_account(account_id)).balance


class TestCreateEntries:
    """Posting transactions."""

    @pytest.mark.asyncio
    async def test_expense_posts_two_entries_and_debits_account(self, engine, store, accounts):
        tx = expense("100")
        entries = await engine.create_entries(tx)

        assert len(entries) == 2
        assert entries[0].debit == Decimal("100") and entries[0].account_id == "cat-food"
        assert entries[1].credit == Decimal("100") and entries[1].account_id == "acc-wallet"
        assert await balance_of(store, "acc-wallet") == Decimal("400")
        assert len(await store.list_entries(transaction_id=tx.id)) == 2

    @pytest.mark.asyncio
    async def test_income_credits_account(self, engine, store, accounts):
        tx = Transaction(
            type=TransactionType.INCOME,
            amount=Decimal("250.50"),
            account_id="acc-wallet",
            category_id="cat-salary",
            date=date(2024, 1, 31),
        )
        await engine.create_entries(tx)
        assert await balance_of(store, "acc-wallet") == Decimal("750.50")

    @pytest.mark.asyncio
    async def test_transfer_moves_money(self, engine, store, accounts):
        await engine.create_entries(transfer("50"))
        assert await balance_of(store, "acc-wallet") == Decimal("450")
        assert await balance_of(store, "acc-savings") == Decimal("50")

    @pytest.mark.asyncio
    async def test_unknown_type_writes_nothing(self, engine, store, accounts):
        # model_construct skips pydantic validation, like a corrupted row would
        tx = Transaction.model_construct(
            id="tx-bad",
            type="refund",
            amount=Decimal("10"),
            account_id="acc-wallet",
            category_id="cat-food",
            to_account_id=None,
            date=date(2024, 1, 1),
            notes=None,
        )
        with pytest.raises(ValidationError, match="Unknown transaction type"):
            await engine.create_entries(tx)

        assert await store.list_entries() == []
        assert await balance_of(store, "acc-wallet") == Decimal("500")

    @pytest.mark.asyncio
    async def test_expense_without_category_rejected(self, engine, store, accounts):
        with pytest.raises(ValidationError, match="category"):
            await engine.create_entries(expense(category_id=None))
        assert await store.list_entries() == []

    @pytest.mark.asyncio
    async def test_missing_account_writes_nothing(self, engine, store, accounts):
        with pytest.raises(NotFoundError):
            await engine.create_entries(expense(account_id="acc-ghost"))
        assert await store.list_entries() == []

    @pytest.mark.asyncio
    async def test_posting_is_audited(self, engine, audit_storage, accounts):
        tx = expense()
        await engine.create_entries(tx)
        events = await audit_storage.get_events_by_entity("transaction", tx.id)
        assert [e.event_type for e in events] == [AuditEventType.TRANSACTION_POSTED]

    @pytest.mark.asyncio
    async def test_concurrent_postings_on_one_account(self, engine, store, accounts):
        await asyncio.gather(*(engine.create_entries(expense("10")) for _ in range(10)))
        assert await balance_of(store, "acc-wallet") == Decimal("400")
        assert len(await store.list_entries(account_id="acc-wallet")) == 10


class FailingBalanceStore(InMemoryRecordStore):
    """Fails every balance adjustment on one account (None: no failures)."""

    def __init__(self, failing_account_id: Optional[str] = None):
        super().__init__()
        self.failing_account_id = failing_account_id

    async def adjust_balance(self, account_id, delta):
        if account_id == self.failing_account_id:
            raise StorageError("sheet unavailable")
        return await super().adjust_balance(account_id, delta)


class TestRollback:
    """Partial failures leave no trace."""

    @pytest.mark.asyncio
    async def test_failed_second_adjustment_rolls_back_first(self, accounts):
        store = FailingBalanceStore("acc-savings")
        for account in accounts:
            await store.insert_account(account)
        engine = LedgerEngine(store, tolerance=Decimal("0.01"))

        with pytest.raises(StorageError):
            await engine.create_entries(transfer("50"))

        assert await store.list_entries() == []
        assert await balance_of(store, "acc-wallet") == Decimal("500")
        assert await balance_of(store, "acc-savings") == Decimal("0")

    @pytest.mark.asyncio
    async def test_failed_posting_is_audited_as_storage_error(self, audit_logger, audit_storage, accounts):
        store = FailingBalanceStore("acc-savings")
        for account in accounts:
            await store.insert_account(account)
        engine = LedgerEngine(store, audit_logger=audit_logger, tolerance=Decimal("0.01"))
        tx = transfer("50")

        with pytest.raises(StorageError):
            await engine.create_entries(tx)

        events = await audit_storage.get_events_by_entity("transaction", tx.id)
        assert [e.event_type for e in events] == [AuditEventType.STORAGE_ERROR]
        assert events[0].details == {"operation": "create_entries"}


class FailingEntryDeleteStore(InMemoryRecordStore):
    """Deletes one entry, then fails."""

    async def delete_entries(self, transaction_id):
        entries = await self.list_entries(transaction_id=transaction_id)
        await self.delete_entry(entries[0].id)
        raise StorageError("sheet unavailable")


class TestReversalRollback:
    """A reversal that fails part way changes nothing and can be retried."""

    @pytest.mark.asyncio
    async def test_failed_second_adjustment_keeps_entries_and_balances(
        self, audit_logger, audit_storage, accounts
    ):
        store = FailingBalanceStore()
        for account in accounts:
            await store.insert_account(account)
        engine = LedgerEngine(store, audit_logger=audit_logger, tolerance=Decimal("0.01"))
        tx = transfer("50")
        await engine.create_entries(tx)

        store.failing_account_id = "acc-savings"
        with pytest.raises(StorageError):
            await engine.reverse_entries(tx)

        assert len(await store.list_entries(transaction_id=tx.id)) == 2
        assert await balance_of(store, "acc-wallet") == Decimal("450")
        assert await balance_of(store, "acc-savings") == Decimal("50")
        assert any(
            e.event_type == AuditEventType.STORAGE_ERROR
            and e.details == {"operation": "reverse_entries"}
            for e in audit_storage.events
        )

        store.failing_account_id = None
        assert await engine.reverse_entries(tx) is True
        assert await store.list_entries(transaction_id=tx.id) == []
        assert await balance_of(store, "acc-wallet") == Decimal("500")
        assert await balance_of(store, "acc-savings") == Decimal("0")

    @pytest.mark.asyncio
    async def test_failed_entry_delete_restores_entries_and_balances(self, accounts):
        store = FailingEntryDeleteStore()
        for account in accounts:
            await store.insert_account(account)
        engine = LedgerEngine(store, tolerance=Decimal("0.01"))
        tx = transfer("50")
        entries = await engine.create_entries(tx)

        with pytest.raises(StorageError):
            await engine.reverse_entries(tx)

        remaining = await store.list_entries(transaction_id=tx.id)
        assert sorted(e.id for e in remaining) == sorted(e.id for e in entries)
        assert await balance_of(store, "acc-wallet") == Decimal("450")
        assert await balance_of(store, "acc-savings") == Decimal("50")
        assert await engine.validate_balance(tx.id) is True


class TestReverseEntries:
    """Reversing postings."""

    @pytest.mark.asyncio
    async def test_reverse_restores_balances(self, engine, store, accounts):
        tx = transfer("50")
        await engine.create_entries(tx)

        assert await engine.reverse_entries(tx) is True
        assert await store.list_entries(transaction_id=tx.id) == []
        assert await balance_of(store, "acc-wallet") == Decimal("500")
        assert await balance_of(store, "acc-savings") == Decimal("0")

    @pytest.mark.asyncio
    async def test_double_reversal_is_a_noop(self, engine, store, audit_storage, accounts):
        tx = expense("100")
        await engine.create_entries(tx)
        await engine.reverse_entries(tx)

        assert await engine.reverse_entries(tx) is False
        assert await balance_of(store, "acc-wallet") == Decimal("500")
        event_types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.REVERSAL_SKIPPED in event_types

    @pytest.mark.asyncio
    async def test_concurrent_reversals_apply_once(self, engine, store, accounts):
        tx = expense("100")
        await engine.create_entries(tx)
        results = await asyncio.gather(engine.reverse_entries(tx), engine.reverse_entries(tx))
        assert sorted(results) == [False, True]
        assert await balance_of(store, "acc-wallet") == Decimal("500")

    @pytest.mark.asyncio
    async def test_reverse_with_deleted_account(self, engine, store, accounts):
        tx = transfer("50")
        await engine.create_entries(tx)
        await store.delete_account("acc-savings")

        assert await engine.reverse_entries(tx) is True
        assert await balance_of(store, "acc-wallet") == Decimal("500")

    @pytest.mark.asyncio
    async def test_repost_after_reversal_restores_balances(self, engine, store, accounts):
        tx = transfer("50")
        await engine.create_entries(tx)
        posted = (
            await balance_of(store, "acc-wallet"),
            await balance_of(store, "acc-savings"),
        )

        await engine.reverse_entries(tx)
        await engine.create_entries(tx)

        assert (
            await balance_of(store, "acc-wallet"),
            await balance_of(store, "acc-savings"),
        ) == posted
        assert len(await store.list_entries(transaction_id=tx.id)) == 2
        assert await engine.validate_balance(tx.id) is True
        assert await engine.check_account_drift("acc-wallet", Decimal("500")) == Decimal("0")


class TestBalanceChecks:
    """validate_balance, ledger-derived balances and drift."""

    @pytest.mark.asyncio
    async def test_posted_transaction_is_balanced(self, engine, accounts):
        tx = expense()
        await engine.create_entries(tx)
        assert await engine.validate_balance(tx.id) is True
        await engine.assert_balanced(tx.id)

    @pytest.mark.asyncio
    async def test_imbalance_detected_and_audited(self, engine, store, audit_storage, accounts):
        tx = expense()
        await engine.create_entries(tx)
        await store.insert_entry(LedgerEntry(
            transaction_id=tx.id,
            account_id="cat-food",
            debit=Decimal("5"),
            date=tx.date,
            type=tx.type,
        ))

        assert await engine.validate_balance(tx.id) is False
        with pytest.raises(ConsistencyError):
            await engine.assert_balanced(tx.id)
        assert any(
            e.event_type == AuditEventType.BALANCE_CHECK_FAILED for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_ledger_balance_is_signed_sum(self, engine, accounts):
        await engine.create_entries(expense("100"))
        await engine.create_entries(transfer("50"))
        assert await engine.get_account_balance_from_ledger("acc-wallet") == Decimal("-150")
        assert await engine.get_account_balance_from_ledger("acc-savings") == Decimal("50")
        assert await engine.get_account_balance_from_ledger("cat-food") == Decimal("100")

    @pytest.mark.asyncio
    async def test_no_drift_after_postings(self, engine, accounts):
        await engine.create_entries(expense("100"))
        await engine.create_entries(transfer("50"))
        assert await engine.check_account_drift("acc-wallet", Decimal("500")) == Decimal("0")
        assert await engine.check_account_drift("acc-savings") == Decimal("0")

    @pytest.mark.asyncio
    async def test_drift_reported(self, engine, store, audit_storage, accounts):
        await engine.create_entries(expense("100"))
        await store.update_account("acc-wallet", {"balance": Decimal("420")})

        drift = await engine.check_account_drift("acc-wallet", Decimal("500"))

        assert drift == Decimal("20")
        assert any(
            e.event_type == AuditEventType.BALANCE_DRIFT_DETECTED for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_drift_for_missing_account(self, engine):
        with pytest.raises(NotFoundError):
            await engine.check_account_drift("acc-ghost")
