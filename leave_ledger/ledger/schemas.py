"""Ledger Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request  → request bodies (write)
  - *Out      → response bodies (read)

Date ordering is deliberately not validated here: the service reports an
inverted range as ``invalid-date-range`` before touching any row.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leave_ledger.common.constants import MAX_REASON_LENGTH, TransactionKind
from leave_ledger.employees.schemas import EmployeeOut


class _ReasonMixin(BaseModel):
    reason: str = Field(..., min_length=1, max_length=MAX_REASON_LENGTH)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class TakeLeaveRequest(_ReasonMixin):
    """Record leave taken over a date range."""

    start_date: date = Field(..., description="First day of leave (inclusive)")
    end_date: date = Field(..., description="Last day of leave (inclusive)")
    days: Optional[int] = Field(
        None, ge=1, description="Defaults to the working days in the range",
    )


class AddLeaveRequest(_ReasonMixin):
    """Manual top-up credited to the current-year bucket."""

    days: int = Field(..., ge=1)


class CancelLeaveRequest(_ReasonMixin):
    """Give back (part of) a recorded leave."""

    start_date: date
    end_date: date
    days: Optional[int] = Field(
        None, ge=1, description="Defaults to the working days in the range",
    )


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class LeaveTransactionOut(BaseModel):
    """One history entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    kind: TransactionKind
    days: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: str
    prior_year_delta: int
    current_year_delta: int
    cancels_transaction_id: Optional[uuid.UUID] = None
    is_cancellation: bool = False
    admin_id: uuid.UUID
    submitted_at: datetime


class LedgerResult(BaseModel):
    """Outcome of a take / add / cancel."""

    employee: EmployeeOut
    transaction: LeaveTransactionOut
    message: str


class OnLeaveStatusOut(BaseModel):
    employee_id: uuid.UUID
    as_of: date
    on_leave: bool
    transaction: Optional[LeaveTransactionOut] = None


class OnLeaveSetOut(BaseModel):
    as_of: date
    employee_ids: list[uuid.UUID]


class LedgerSnapshot(BaseModel):
    """Read-only view for report and export consumers."""

    as_of: date
    balances: list[EmployeeOut]
    history: list[LeaveTransactionOut]
    on_leave: list[uuid.UUID]
