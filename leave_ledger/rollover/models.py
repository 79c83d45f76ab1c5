"""Year-rollover ORM models: LeaveYearSettings (singleton), RolloverRun."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_ledger.common.constants import (
    RolloverOperation,
    RolloverStatus,
    RolloverStrategy,
)
from leave_ledger.database import Base


class LeaveYearSettings(Base):
    """The active leave year. One row, addressed by an injected id."""

    __tablename__ = "leave_year_settings"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True)
    current_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # Set only while a revert-to-previous path exists
    previous_year: Mapped[Optional[int]] = mapped_column(sa.Integer)
    updated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    def __repr__(self) -> str:
        return f"<LeaveYearSettings {self.current_year} prev={self.previous_year}>"


class RolloverRun(Base):
    """Audit and repair record of one rollover operation."""

    __tablename__ = "rollover_runs"
    __table_args__ = (
        sa.Index("ix_rollover_runs_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    settings_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("leave_year_settings.id"), nullable=False,
    )
    operation: Mapped[RolloverOperation] = mapped_column(
        sa.Enum(RolloverOperation, name="rollover_operation"), nullable=False,
    )
    strategy: Mapped[RolloverStrategy] = mapped_column(
        sa.Enum(RolloverStrategy, name="rollover_strategy"), nullable=False,
    )
    status: Mapped[RolloverStatus] = mapped_column(
        sa.Enum(RolloverStatus, name="rollover_status"), nullable=False,
    )
    from_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    to_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # Previous-year value to store once every row has moved
    target_previous_year: Mapped[Optional[int]] = mapped_column(sa.Integer)
    updated_employee_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    cursor: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    error: Mapped[Optional[str]] = mapped_column(sa.Text)
    started_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    started_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False,
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    def __repr__(self) -> str:
        return (
            f"<RolloverRun {self.operation.value} {self.from_year}->{self.to_year} "
            f"{self.status.value}>"
        )
