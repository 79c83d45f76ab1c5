"""Ledger ORM model: LeaveTransaction (append-only history entry)."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_ledger.common.constants import TransactionKind
from leave_ledger.database import Base

if TYPE_CHECKING:
    from leave_ledger.employees.models import Employee


class LeaveTransaction(Base):
    """One balance mutation. Rows are inserted, never updated."""

    __tablename__ = "leave_transactions"
    __table_args__ = (
        sa.CheckConstraint("days > 0", name="ck_leave_transactions_days_positive"),
        sa.CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date",
            name="ck_leave_transactions_range_ordered",
        ),
        sa.Index(
            "ix_leave_transactions_employee_submitted",
            "employee_id",
            "submitted_at",
        ),
        sa.Index(
            "ix_leave_transactions_range",
            "kind",
            "start_date",
            "end_date",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[TransactionKind] = mapped_column(
        sa.Enum(TransactionKind, name="transaction_kind"), nullable=False,
    )
    days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)

    # Signed bucket movement, so balances can be rebuilt from the log
    prior_year_delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    current_year_delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # Set on the accrual that reverses (part of) a consumption
    cancels_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_transactions.id", ondelete="CASCADE"),
    )

    admin_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False,
    )

    # Relationships
    employee: Mapped[Employee] = relationship(
        back_populates="transactions"
    )

    @property
    def is_cancellation(self) -> bool:
        return self.cancels_transaction_id is not None

    def __repr__(self) -> str:
        return (
            f"<LeaveTransaction {self.kind.value} {self.days}d "
            f"{self.start_date}..{self.end_date} emp={self.employee_id}>"
        )
