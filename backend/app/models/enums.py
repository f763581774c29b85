from __future__ import annotations

import enum


class LeaveUnit(enum.StrEnum):
    """Unit a leave type is charged in."""

    DAYS = "DAYS"
    HOURS = "HOURS"


class PolicyKind(enum.StrEnum):
    """Which engine consumes a policy."""

    LEAVE = "LEAVE"
    OVERTIME = "OVERTIME"


class RequestStatus(enum.StrEnum):
    """State machine shared by leave requests and overtime entries."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class StepStatus(enum.StrEnum):
    """State of a single approval step."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class DecisionOutcome(enum.StrEnum):
    """Outcome an approver records on a step."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"


class SubjectKind(enum.StrEnum):
    """Kind of approvable request an approval step belongs to."""

    LEAVE_REQUEST = "LEAVE_REQUEST"
    OVERTIME_ENTRY = "OVERTIME_ENTRY"


class LedgerEventKind(enum.StrEnum):
    """Classification of a ledger event."""

    ACCRUAL = "ACCRUAL"
    USAGE = "USAGE"
    ADJUSTMENT = "ADJUSTMENT"
    CARRYOVER_IN = "CARRYOVER_IN"
    CARRYOVER_EXPIRE = "CARRYOVER_EXPIRE"
    ENCASHMENT = "ENCASHMENT"
    OVERTIME_TO_TOIL = "OVERTIME_TO_TOIL"


class LedgerSourceType(enum.StrEnum):
    """Origin of a ledger event."""

    LEAVE_REQUEST = "LEAVE_REQUEST"
    OVERTIME_ENTRY = "OVERTIME_ENTRY"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class AccrualFrequency(enum.StrEnum):
    """Length of one accrual period."""

    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class ProrationMethod(enum.StrEnum):
    """How partial-period accruals are calculated."""

    WORKING_DAYS = "WORKING_DAYS"
    CALENDAR_DAYS = "CALENDAR_DAYS"
    NONE = "NONE"


class IdempotencyScope(enum.StrEnum):
    """Write-operation kinds an idempotency key is scoped to."""

    LEAVE_CREATE = "leave_request.create"
    LEAVE_SUBMIT = "leave_request.submit"
    LEAVE_DECIDE = "leave_request.decide"
    LEAVE_SKIP = "leave_request.skip"
    LEAVE_CANCEL = "leave_request.cancel"
    OVERTIME_CREATE = "overtime_entry.create"
    OVERTIME_SUBMIT = "overtime_entry.submit"
    OVERTIME_DECIDE = "overtime_entry.decide"
    OVERTIME_SKIP = "overtime_entry.skip"
    OVERTIME_CANCEL = "overtime_entry.cancel"
    BALANCE_ADJUST = "balance.adjust"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    LEAVE_TYPE = "LEAVE_TYPE"
    POLICY = "POLICY"
    POLICY_VERSION = "POLICY_VERSION"
    ASSIGNMENT = "ASSIGNMENT"
    LEAVE_REQUEST = "LEAVE_REQUEST"
    OVERTIME_ENTRY = "OVERTIME_ENTRY"
    LEDGER_EVENT = "LEDGER_EVENT"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SKIP = "SKIP"
    CANCEL = "CANCEL"
