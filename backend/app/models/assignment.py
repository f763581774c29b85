# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase


class PolicyAssignment(UUIDBase, TimestampMixin, table=True):
    """Links an employee to a policy over a half-open date range."""

    __tablename__ = "policy_assignment"
    __table_args__ = (
        sa.UniqueConstraint(
            "organization_id",
            "employee_id",
            "policy_id",
            "effective_from",
            name="uq_assignment_employee_policy_from",
        ),
    )

    organization_id: uuid.UUID = Field(index=True)
    employee_id: uuid.UUID = Field(index=True)
    policy_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("policy.id", ondelete="CASCADE"), nullable=False, index=True),
    )
    effective_from: date
    effective_to: date | None = None
    created_by: uuid.UUID
