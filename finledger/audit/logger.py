"""
Audit Logger

DESIGN DECISION: Every posting, reversal and scheduler decision is logged.
This provides:
1. Complete traceability of balance changes
2. Debugging capability when a recurring rule fails
3. The per-rule failure history a batch caller can inspect later

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import datetime as dt
import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finledger.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for local JSON logging."""
    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_recorded(
        self,
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_recorded(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_posted(
        self,
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log ledger posting."""
        await self.log(AuditEventBuilder.transaction_posted(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            entry_count=entry_count,
            correlation_id=correlation_id,
        ))

    async def log_transaction_reversed(
        self,
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log ledger reversal."""
        await self.log(AuditEventBuilder.transaction_reversed(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_reversal_skipped(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reversal_skipped(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_balance_check_failed(
        self,
        transaction_id: str,
        total_debits: Decimal,
        total_credits: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_check_failed(
            transaction_id=transaction_id,
            total_debits=total_debits,
            total_credits=total_credits,
            correlation_id=correlation_id,
        ))

    async def log_balance_drift(
        self,
        account_id: str,
        cached_balance: Decimal,
        ledger_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_drift_detected(
            account_id=account_id,
            cached_balance=cached_balance,
            ledger_balance=ledger_balance,
            correlation_id=correlation_id,
        ))

    async def log_rule_created(
        self,
        rule_id: str,
        name: str,
        frequency: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_rule_created(
            rule_id=rule_id,
            name=name,
            frequency=frequency,
            correlation_id=correlation_id,
        ))

    async def log_recurring_materialized(
        self,
        rule_id: str,
        transaction_id: str,
        due_date: dt.date,
        next_date: dt.date,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recurring rule turning into a transaction."""
        await self.log(AuditEventBuilder.recurring_materialized(
            rule_id=rule_id,
            transaction_id=transaction_id,
            due_date=due_date,
            next_date=next_date,
            correlation_id=correlation_id,
        ))

    async def log_recurring_deactivated(
        self,
        rule_id: str,
        end_date: Optional[dt.date],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_deactivated(
            rule_id=rule_id,
            end_date=end_date,
            correlation_id=correlation_id,
        ))

    async def log_recurring_failed(
        self,
        rule_id: str,
        rule_name: Optional[str],
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recurring rule failure."""
        await self.log(AuditEventBuilder.recurring_failed(
            rule_id=rule_id,
            rule_name=rule_name,
            error_type=error_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rule_toggled(
        self,
        rule_id: str,
        is_active: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_toggled(
            rule_id=rule_id,
            is_active=is_active,
            correlation_id=correlation_id,
        ))

    async def log_rule_deleted(
        self,
        rule_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_deleted(
            rule_id=rule_id,
            correlation_id=correlation_id,
        ))

    async def log_batch_completed(
        self,
        as_of: dt.date,
        created_count: int,
        failure_count: int,
        deactivated_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_batch_completed(
            as_of=as_of,
            created_count=created_count,
            failure_count=failure_count,
            deactivated_count=deactivated_count,
            correlation_id=correlation_id,
        ))

    async def log_account_posting(
        self,
        event_type: AuditEventType,
        account_id: str,
        transaction_id: str,
        amount: Decimal,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an automated interest, card or deposit posting."""
        await self.log(AuditEventBuilder.account_posting(
            event_type=event_type,
            account_id=account_id,
            transaction_id=transaction_id,
            amount=amount,
            description=description,
            correlation_id=correlation_id,
        ))

    async def log_loan_repayment(
        self,
        loan_account_id: str,
        payment: Decimal,
        principal: Decimal,
        interest: Decimal,
        new_outstanding: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.loan_repayment_recorded(
            loan_account_id=loan_account_id,
            payment=payment,
            principal=principal,
            interest=interest,
            new_outstanding=new_outstanding,
            correlation_id=correlation_id,
        ))

    async def log_financial_failed(
        self,
        account_id: str,
        account_name: Optional[str],
        process: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.financial_process_failed(
            account_id=account_id,
            account_name=account_name,
            process=process,
            error_type=error_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_financial_batch_completed(
        self,
        as_of: dt.date,
        created_count: int,
        failure_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.financial_batch_completed(
            as_of=as_of,
            created_count=created_count,
            failure_count=failure_count,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a store write that failed and was rolled back."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a recurring batch).
    Pass it through all subsequent operations.
    """
    return uuid4()
