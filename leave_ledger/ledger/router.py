"""Ledger router — take, add, cancel, history and on-leave status.

All endpoints require authentication; balance mutations require the admin
role and stamp the caller's id on the history entry.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.auth.dependencies import get_current_user, require_admin
from leave_ledger.auth.schemas import AdminPrincipal
from leave_ledger.common.exceptions import NotFoundException
from leave_ledger.common.pagination import PaginationParams
from leave_ledger.database import get_db
from leave_ledger.employees.models import Employee
from leave_ledger.ledger.history import HistoryStore
from leave_ledger.ledger.schemas import (
    AddLeaveRequest,
    CancelLeaveRequest,
    LedgerResult,
    LedgerSnapshot,
    OnLeaveSetOut,
    OnLeaveStatusOut,
    TakeLeaveRequest,
)
from leave_ledger.ledger.service import LedgerService
from leave_ledger.ledger.status import on_leave_cache, today

router = APIRouter(prefix="", tags=["ledger"])


# ── POST /employees/{id}/take ───────────────────────────────────────

@router.post("/employees/{employee_id}/take", response_model=LedgerResult)
async def take_leave(
    employee_id: uuid.UUID,
    body: TakeLeaveRequest,
    admin: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record leave taken. Days default to the working days in the range."""
    return await LedgerService.take_leave(db, employee_id, body, admin.id)


# ── POST /employees/{id}/add ────────────────────────────────────────

@router.post("/employees/{employee_id}/add", response_model=LedgerResult)
async def add_leave(
    employee_id: uuid.UUID,
    body: AddLeaveRequest,
    admin: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LedgerService.add_leave(db, employee_id, body, admin.id)


# ── POST /employees/{id}/cancel ─────────────────────────────────────

@router.post("/employees/{employee_id}/cancel", response_model=LedgerResult)
async def cancel_leave(
    employee_id: uuid.UUID,
    body: CancelLeaveRequest,
    admin: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Give back days of a recorded leave."""
    return await LedgerService.cancel_leave(db, employee_id, body, admin.id)


# ── GET /employees/{id}/history ─────────────────────────────────────

@router.get("/employees/{employee_id}/history")
async def employee_history(
    employee_id: uuid.UUID,
    pagination: PaginationParams = Depends(),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """History entries, most recent first."""
    if await db.get(Employee, employee_id) is None:
        raise NotFoundException("Employee", str(employee_id))
    return await HistoryStore.list_for_employee(db, employee_id, pagination)


# ── GET /employees/{id}/on-leave ────────────────────────────────────

@router.get("/employees/{employee_id}/on-leave", response_model=OnLeaveStatusOut)
async def employee_on_leave(
    employee_id: uuid.UUID,
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LedgerService.on_leave_status(db, employee_id, as_of)


# ── GET /on-leave ───────────────────────────────────────────────────

@router.get("/on-leave", response_model=OnLeaveSetOut)
async def on_leave(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    as_of = as_of or today()
    ids = await on_leave_cache.get(db, as_of)
    return OnLeaveSetOut(as_of=as_of, employee_ids=sorted(ids, key=str))


# ── GET /snapshot ───────────────────────────────────────────────────

@router.get("/snapshot", response_model=LedgerSnapshot)
async def snapshot(
    as_of: Optional[date] = Query(None),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Balances, history and on-leave set for reports and exports."""
    return await LedgerService.snapshot(db, as_of)
