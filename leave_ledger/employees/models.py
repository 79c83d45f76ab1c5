"""Employee ORM model: identity plus the two leave buckets.

SQLAlchemy 2.0 async-compatible model with Mapped[] annotations.
Column names match the PostgreSQL schema defined in 001_initial_schema.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_ledger.common.constants import Rank
from leave_ledger.database import Base

if TYPE_CHECKING:
    from leave_ledger.ledger.models import LeaveTransaction


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Employee(Base):
    """An employee and their prior-year / current-year leave balance."""

    __tablename__ = "employees"
    __table_args__ = (
        sa.CheckConstraint(
            "prior_year_balance >= 0", name="ck_employees_prior_year_non_negative",
        ),
        sa.CheckConstraint(
            "current_year_balance >= 0", name="ck_employees_current_year_non_negative",
        ),
        sa.CheckConstraint(
            "two_years_ago_balance >= 0", name="ck_employees_two_years_ago_non_negative",
        ),
        sa.Index("ix_employees_leave_year", "leave_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_number: Mapped[str] = mapped_column(
        sa.String(50), unique=True, nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    rank: Mapped[Rank] = mapped_column(
        sa.Enum(Rank, name="employee_rank", values_callable=lambda e: [r.value for r in e]),
        nullable=False,
    )
    department: Mapped[Optional[str]] = mapped_column(sa.String(255))

    # ── Leave buckets ───────────────────────────────────────────────
    prior_year_balance: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0,
    )
    current_year_balance: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0,
    )

    # ── Rollback chain (written only by the rollover engine) ────────
    two_years_ago_balance: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0,
    )
    next_year_backup_balance: Mapped[Optional[int]] = mapped_column(sa.Integer)
    leave_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    transactions: Mapped[list[LeaveTransaction]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_balance(self) -> int:
        return self.prior_year_balance + self.current_year_balance

    def __repr__(self) -> str:
        return (
            f"<Employee {self.employee_number} "
            f"{self.prior_year_balance}+{self.current_year_balance}>"
        )
