"""
Shared fixtures.

Everything runs against the in-memory store; the Google Sheets tests
bring their own fake worksheet.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from finledger.audit import AuditLogger
from finledger.ledger import LedgerEngine
from finledger.models.ledger import Account
from finledger.recurring import RecurringScheduler
from finledger.services.storage import InMemoryAuditStorage, InMemoryRecordStore


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage: InMemoryAuditStorage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(store: InMemoryRecordStore, audit_logger: AuditLogger) -> LedgerEngine:
    return LedgerEngine(store, audit_logger=audit_logger, tolerance=Decimal("0.01"))


@pytest.fixture
def scheduler(
    store: InMemoryRecordStore,
    engine: LedgerEngine,
    audit_logger: AuditLogger,
) -> RecurringScheduler:
    return RecurringScheduler(
        store,
        engine,
        audit_logger=audit_logger,
        auto_tags=["auto-generated", "recurring"],
    )


@pytest_asyncio.fixture
async def accounts(store: InMemoryRecordStore) -> tuple[Account, Account]:
    """Wallet with 500 and an empty savings account."""
    wallet = Account(id="acc-wallet", name="Wallet", balance=Decimal("500"))
    savings = Account(id="acc-savings", name="Savings", balance=Decimal("0"))
    await store.insert_account(wallet)
    await store.insert_account(savings)
    return wallet, savings
