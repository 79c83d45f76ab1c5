"""Year-rollover Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_ledger.common.constants import (
    RolloverOperation,
    RolloverStatus,
    RolloverStrategy,
)


class RolloverSettingsOut(BaseModel):
    """The active leave year and which transitions are currently possible."""

    model_config = ConfigDict(from_attributes=True)

    current_year: int
    previous_year: Optional[int] = None
    can_revert_previous: bool
    can_revert_next: bool
    halted_run_id: Optional[uuid.UUID] = None
    strategy: RolloverStrategy
    updated_at: Optional[datetime] = None
    updated_by: Optional[uuid.UUID] = None


class RolloverRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    operation: RolloverOperation
    strategy: RolloverStrategy
    status: RolloverStatus
    from_year: int
    to_year: int
    updated_employee_ids: list[str]
    error: Optional[str] = None
    started_by: Optional[uuid.UUID] = None
    started_at: datetime
    finished_at: Optional[datetime] = None


class ResolveRunRequest(BaseModel):
    """Operator confirmation that a halted run was repaired by hand."""

    note: Optional[str] = Field(None, max_length=500)
