"""Employee router — onboarding, identity updates, listing and dashboard counters.

Routes:
    /employees          — List (search, on-leave filter), create
    /employees/stats    — Totals, on leave today, low balance
    /employees/{id}     — Get, update identity fields, delete

Reads need any valid token; writes need the admin role.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.auth.dependencies import get_current_user, require_admin
from leave_ledger.auth.schemas import AdminPrincipal
from leave_ledger.common.pagination import PaginationParams
from leave_ledger.database import get_db
from leave_ledger.employees.schemas import (
    EmployeeCreate,
    EmployeeOut,
    EmployeeStats,
    EmployeeUpdate,
)
from leave_ledger.employees.service import EmployeeService

router = APIRouter(prefix="", tags=["employees"])


# ── GET /employees — List employees ─────────────────────────────────

@router.get("")
async def list_employees(
    search: Optional[str] = Query(None, description="Match name or employee number"),
    on_leave: Optional[bool] = Query(None, description="Only (not) on leave as of the date"),
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    pagination: PaginationParams = Depends(),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Employees ordered by rank, then name."""
    return await EmployeeService.list_employees(
        db, pagination, search=search, on_leave=on_leave, as_of=as_of,
    )


# ── GET /employees/stats ────────────────────────────────────────────

@router.get("/stats", response_model=EmployeeStats)
async def employee_stats(
    as_of: Optional[date] = Query(None),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_stats(db, as_of=as_of)


# ── POST /employees — Onboard ───────────────────────────────────────

@router.post("", response_model=EmployeeOut, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    admin: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.create_employee(db, body, actor_id=admin.id)


# ── GET /employees/{id} ─────────────────────────────────────────────

@router.get("/{employee_id}", response_model=EmployeeOut)
async def get_employee(
    employee_id: uuid.UUID,
    as_of: Optional[date] = Query(None),
    _: AdminPrincipal = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_employee(db, employee_id, as_of=as_of)


# ── PATCH /employees/{id} ───────────────────────────────────────────

@router.patch("/{employee_id}", response_model=EmployeeOut)
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.update_employee(db, employee_id, body, actor_id=admin.id)


# ── DELETE /employees/{id} ──────────────────────────────────────────

@router.delete("/{employee_id}", status_code=204)
async def delete_employee(
    employee_id: uuid.UUID,
    admin: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await EmployeeService.delete_employee(db, employee_id, actor_id=admin.id)
    return Response(status_code=204)
