# ruff: noqa: TC003
from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase


class IdempotencyRecord(UUIDBase, TimestampMixin, table=True):
    """Stored outcome of a keyed write, replayed for identical retries."""

    __tablename__ = "idempotency_record"
    __table_args__ = (
        sa.UniqueConstraint("scope", "caller_key", "idempotency_key", name="uq_idempotency_scope_caller_key"),
    )

    scope: str = Field(max_length=100)
    caller_key: str = Field(max_length=255)
    idempotency_key: str = Field(max_length=255)
    request_hash: str = Field(max_length=64)
    response_status: int
    response_body: dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON)
