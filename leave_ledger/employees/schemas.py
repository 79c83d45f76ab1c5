"""Employee Pydantic v2 schemas — request / response validation."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leave_ledger.common.constants import Rank


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Onboard an employee. Balances default to an empty prior year and a full grant."""

    employee_number: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    rank: Rank
    department: Optional[str] = Field(None, max_length=255)
    prior_year_balance: int = Field(0, ge=0)
    current_year_balance: Optional[int] = Field(
        None, ge=0, description="Defaults to the annual grant",
    )

    @field_validator("employee_number", "name", "department", mode="before")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _strip(v)


class EmployeeUpdate(BaseModel):
    """Identity fields only; balances change exclusively through the ledger."""

    employee_number: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    rank: Optional[Rank] = None
    department: Optional[str] = Field(None, max_length=255)

    @field_validator("employee_number", "name", "department", mode="before")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _strip(v)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class EmployeeOut(BaseModel):
    """Employee with both buckets and the derived on-leave flag."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_number: str
    name: str
    rank: Rank
    department: Optional[str] = None
    prior_year_balance: int
    current_year_balance: int
    total_balance: int
    leave_year: int
    created_at: datetime
    updated_at: datetime

    # Filled by service, not from ORM
    on_leave: bool = False


class EmployeeStats(BaseModel):
    """Dashboard counters."""

    as_of: date
    total_employees: int
    on_leave: int
    low_balance: int
    low_balance_threshold: int
