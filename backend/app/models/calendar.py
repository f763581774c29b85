# ruff: noqa: TC003
from __future__ import annotations

import datetime
import uuid
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UUIDBase


class OrganizationHoliday(UUIDBase, table=True):
    """A non-working date for an organization."""

    __tablename__ = "organization_holiday"
    __table_args__ = (sa.UniqueConstraint("organization_id", "date", name="uq_holiday_org_date"),)

    organization_id: uuid.UUID = Field(index=True)
    date: datetime.date
    name: str = Field(max_length=255)


class WorkSchedule(UUIDBase, table=True):
    """Weekly working pattern stored as a JSON definition.

    ``definition_json`` maps ISO weekday numbers (``"1"`` = Monday) to a
    working window with optional breaks; missing weekdays are days off.
    """

    __tablename__ = "work_schedule"

    organization_id: uuid.UUID = Field(index=True)
    name: str = Field(max_length=255)
    definition_json: dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON)
