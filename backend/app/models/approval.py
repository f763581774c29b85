# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UTCDateTime, UUIDBase
from app.models.enums import StepStatus


class ApprovalStep(UUIDBase, TimestampMixin, table=True):
    """One approver's position in a request's ordered approval chain."""

    __tablename__ = "approval_step"
    __table_args__ = (
        sa.UniqueConstraint("subject_kind", "subject_id", "sequence", name="uq_approval_step_sequence"),
        sa.Index("ix_approval_step_subject", "subject_kind", "subject_id"),
    )

    organization_id: uuid.UUID = Field(index=True)
    subject_kind: str = Field(max_length=30)
    subject_id: uuid.UUID
    sequence: int
    approver_id: uuid.UUID = Field(index=True)
    status: str = Field(default=StepStatus.PENDING, max_length=20, sa_column_kwargs={"server_default": "PENDING"})
    decided_by: uuid.UUID | None = None
    decided_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    comment: str | None = None
