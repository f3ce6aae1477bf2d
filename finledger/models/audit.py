"""
Audit Models for Finledger

Every posting, reversal and scheduler decision is logged for audit
purposes. This provides:
1. Complete traceability of balance changes
2. Debugging information when a recurring rule fails
3. A way to explain any balance after the fact

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import datetime as dt
import json
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every balance-affecting step has its own event type.
    """
    # Ledger
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_POSTED = "transaction_posted"
    TRANSACTION_REVERSED = "transaction_reversed"
    REVERSAL_SKIPPED = "reversal_skipped"
    TRANSACTION_DELETED = "transaction_deleted"
    BALANCE_CHECK_FAILED = "balance_check_failed"
    BALANCE_DRIFT_DETECTED = "balance_drift_detected"

    # Recurring
    RECURRING_RULE_CREATED = "recurring_rule_created"
    RECURRING_MATERIALIZED = "recurring_materialized"
    RECURRING_DEACTIVATED = "recurring_deactivated"
    RECURRING_FAILED = "recurring_failed"
    RECURRING_PAUSED = "recurring_paused"
    RECURRING_RESUMED = "recurring_resumed"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_BATCH_COMPLETED = "recurring_batch_completed"

    # Financial
    INTEREST_POSTED = "interest_posted"
    CARD_INTEREST_CHARGED = "card_interest_charged"
    DEPOSIT_MATURED = "deposit_matured"
    LOAN_REPAYMENT_RECORDED = "loan_repayment_recorded"
    FINANCIAL_PROCESS_FAILED = "financial_process_failed"
    FINANCIAL_BATCH_COMPLETED = "financial_batch_completed"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what record is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of record (e.g., 'transaction', 'recurring_rule', 'account')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the record this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one recurring batch)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_posted(tx_id, "expense", "100.00", 2)
        event = AuditEventBuilder.recurring_failed(rule_id, name, "StorageError", msg)
    """

    @staticmethod
    def transaction_recorded(
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {transaction_type} of {amount}",
            details={
                "type": transaction_type,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_posted(
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_POSTED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Posted {entry_count} ledger entries for {transaction_type} of {amount}",
            details={
                "type": transaction_type,
                "amount": str(amount),
                "entry_count": entry_count,
            },
        )

    @staticmethod
    def transaction_reversed(
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REVERSED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Reversed postings for {transaction_type} of {amount}",
            details={
                "type": transaction_type,
                "amount": str(amount),
            },
        )

    @staticmethod
    def reversal_skipped(
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REVERSAL_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Reversal skipped: no ledger entries remain for transaction",
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted",
            is_user_action=True,
        )

    @staticmethod
    def balance_check_failed(
        transaction_id: str,
        total_debits: Decimal,
        total_credits: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_CHECK_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Ledger imbalance detected",
            details={
                "total_debits": str(total_debits),
                "total_credits": str(total_credits),
                "difference": str(total_debits - total_credits),
            },
        )

    @staticmethod
    def balance_drift_detected(
        account_id: str,
        cached_balance: Decimal,
        ledger_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DRIFT_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Cached account balance differs from ledger",
            details={
                "cached_balance": str(cached_balance),
                "ledger_balance": str(ledger_balance),
            },
        )

    @staticmethod
    def recurring_rule_created(
        rule_id: str,
        name: str,
        frequency: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_RULE_CREATED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule created: {name} ({frequency})",
            details={"name": name, "frequency": frequency},
            is_user_action=True,
        )

    @staticmethod
    def recurring_materialized(
        rule_id: str,
        transaction_id: str,
        due_date: dt.date,
        next_date: dt.date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_MATERIALIZED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule materialized for {due_date.isoformat()}",
            details={
                "transaction_id": transaction_id,
                "due_date": due_date.isoformat(),
                "next_date": next_date.isoformat(),
            },
        )

    @staticmethod
    def recurring_deactivated(
        rule_id: str,
        end_date: Optional[dt.date],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_DEACTIVATED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring rule deactivated: end date passed",
            details={"end_date": end_date.isoformat() if end_date else None},
        )

    @staticmethod
    def recurring_failed(
        rule_id: str,
        rule_name: Optional[str],
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule failed: {rule_name or rule_id}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def recurring_toggled(
        rule_id: str,
        is_active: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.RECURRING_RESUMED
                if is_active
                else AuditEventType.RECURRING_PAUSED
            ),
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring rule resumed" if is_active else "Recurring rule paused",
            is_user_action=True,
        )

    @staticmethod
    def recurring_deleted(
        rule_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_DELETED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring rule deleted",
            is_user_action=True,
        )

    @staticmethod
    def recurring_batch_completed(
        as_of: dt.date,
        created_count: int,
        failure_count: int,
        deactivated_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_BATCH_COMPLETED,
            severity=AuditSeverity.WARNING if failure_count else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=(
                f"Recurring batch for {as_of.isoformat()}: "
                f"{created_count} created, {failure_count} failed"
            ),
            details={
                "as_of": as_of.isoformat(),
                "created": created_count,
                "failed": failure_count,
                "deactivated": deactivated_count,
            },
        )

    @staticmethod
    def account_posting(
        event_type: AuditEventType,
        account_id: str,
        transaction_id: str,
        amount: Decimal,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Interest, card charge or deposit maturity posted to an account."""
        return AuditEvent(
            event_type=event_type,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=description,
            details={
                "transaction_id": transaction_id,
                "amount": str(amount),
            },
        )

    @staticmethod
    def loan_repayment_recorded(
        loan_account_id: str,
        payment: Decimal,
        principal: Decimal,
        interest: Decimal,
        new_outstanding: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_REPAYMENT_RECORDED,
            entity_type="account",
            entity_id=loan_account_id,
            correlation_id=correlation_id,
            description=f"Loan repayment of {payment} recorded",
            details={
                "payment": str(payment),
                "principal": str(principal),
                "interest": str(interest),
                "new_outstanding": str(new_outstanding),
            },
            is_user_action=True,
        )

    @staticmethod
    def financial_process_failed(
        account_id: str,
        account_name: Optional[str],
        process: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FINANCIAL_PROCESS_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"{process} failed for {account_name or account_id}",
            details={"process": process},
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def financial_batch_completed(
        as_of: dt.date,
        created_count: int,
        failure_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FINANCIAL_BATCH_COMPLETED,
            severity=AuditSeverity.WARNING if failure_count else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=(
                f"Daily financial run for {as_of.isoformat()}: "
                f"{created_count} posted, {failure_count} failed"
            ),
            details={
                "as_of": as_of.isoformat(),
                "created": created_count,
                "failed": failure_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
