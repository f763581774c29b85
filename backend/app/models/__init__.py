from sqlmodel import SQLModel

from app.models.approval import ApprovalStep
from app.models.assignment import PolicyAssignment
from app.models.audit import AuditLog
from app.models.balance import BalanceSummary
from app.models.base import TimestampMixin, UTCDateTime, UUIDBase
from app.models.calendar import OrganizationHoliday, WorkSchedule
from app.models.enums import (
    AccrualFrequency,
    AuditAction,
    AuditEntityType,
    DecisionOutcome,
    IdempotencyScope,
    LeaveUnit,
    LedgerEventKind,
    LedgerSourceType,
    PolicyKind,
    ProrationMethod,
    RequestStatus,
    StepStatus,
    SubjectKind,
)
from app.models.idempotency import IdempotencyRecord
from app.models.leave_type import LeaveType
from app.models.ledger import LedgerEvent
from app.models.overtime import OvertimeEntry
from app.models.policy import Policy, PolicyVersion
from app.models.request import LeaveRequest

__all__ = [
    "AccrualFrequency",
    "ApprovalStep",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "BalanceSummary",
    "DecisionOutcome",
    "IdempotencyRecord",
    "IdempotencyScope",
    "LeaveRequest",
    "LeaveType",
    "LeaveUnit",
    "LedgerEvent",
    "LedgerEventKind",
    "LedgerSourceType",
    "OrganizationHoliday",
    "OvertimeEntry",
    "Policy",
    "PolicyAssignment",
    "PolicyKind",
    "PolicyVersion",
    "ProrationMethod",
    "RequestStatus",
    "SQLModel",
    "StepStatus",
    "SubjectKind",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDBase",
    "WorkSchedule",
]
