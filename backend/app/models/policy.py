# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase


class Policy(UUIDBase, TimestampMixin, table=True):
    """Logical grouping for a leave or overtime policy (e.g. Vacation-FT)."""

    __tablename__ = "policy"
    __table_args__ = (sa.UniqueConstraint("organization_id", "key", name="uq_policy_org_key"),)

    organization_id: uuid.UUID = Field(index=True)
    key: str = Field(max_length=255)
    kind: str = Field(max_length=20)
    leave_type_id: uuid.UUID | None = Field(
        default=None,
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=True, index=True),
    )


class PolicyVersion(UUIDBase, TimestampMixin, table=True):
    """Immutable version of a policy's settings, created on every policy update."""

    __tablename__ = "policy_version"
    __table_args__ = (sa.UniqueConstraint("policy_id", "version", name="uq_policy_version_number"),)

    policy_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("policy.id", ondelete="CASCADE"), nullable=False, index=True),
    )
    version: int
    effective_from: date
    effective_to: date | None = None
    settings_json: dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON)
    created_by: uuid.UUID
    change_reason: str | None = None
