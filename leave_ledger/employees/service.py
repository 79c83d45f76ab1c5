"""Employee service layer — async CRUD, listing and dashboard counters.

Uses:
  - ``paginate()`` from leave_ledger.common.pagination
  - ``apply_search`` from leave_ledger.common.filters
  - the on-leave cache from leave_ledger.ledger.status
  - ``NotFoundException / ConflictError`` from leave_ledger.common.exceptions

Balances are only seeded here (on onboarding); every later change goes
through the ledger or the rollover engine.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import CHANNEL_EMPLOYEES, RANK_ORDER
from leave_ledger.common.events import notifier
from leave_ledger.common.exceptions import ConflictError, NotFoundException
from leave_ledger.common.filters import apply_search
from leave_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from leave_ledger.config import settings
from leave_ledger.employees.models import Employee
from leave_ledger.employees.schemas import (
    EmployeeCreate,
    EmployeeOut,
    EmployeeStats,
    EmployeeUpdate,
)
from leave_ledger.ledger.status import on_leave_cache, today
from leave_ledger.rollover.engine import load_year_settings

logger = logging.getLogger(__name__)

SEARCH_COLUMNS = ["name", "employee_number"]


def rank_then_name():
    """ORDER BY clauses: office rank (KAKANIM first), then name."""
    rank_position = case(RANK_ORDER, value=Employee.rank, else_=len(RANK_ORDER))
    return (rank_position, Employee.name, Employee.id)


def _conflict_from(exc: IntegrityError, employee_number: Optional[str]) -> Exception:
    err = str(exc.orig)
    if "employee_number" in err or "employees_employee_number_key" in err:
        return ConflictError("employee_number", employee_number)
    return exc


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    # ── List (paginated, searchable, on-leave filter) ───────────────

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
        on_leave: Optional[bool] = None,
        as_of: Optional[date] = None,
    ) -> PaginatedResponse:
        """Return employees in rank-then-name order, each with its on-leave flag."""
        absent = await on_leave_cache.get(db, as_of)

        query = select(Employee).order_by(*rank_then_name())
        query = apply_search(query, Employee, search, SEARCH_COLUMNS)
        if on_leave is True:
            query = query.where(Employee.id.in_(absent))
        elif on_leave is False and absent:
            query = query.where(Employee.id.not_in(absent))

        def _to_out(employee: Employee) -> EmployeeOut:
            out = EmployeeOut.model_validate(employee)
            out.on_leave = employee.id in absent
            return out

        return await paginate(db, query, pagination, transform=_to_out)

    # ── Get single ──────────────────────────────────────────────────

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        as_of: Optional[date] = None,
    ) -> EmployeeOut:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        out = EmployeeOut.model_validate(employee)
        out.on_leave = employee.id in await on_leave_cache.get(db, as_of)
        return out

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeOut:
        """Onboard an employee into the active leave year."""
        year_settings = await load_year_settings(
            db, settings.LEAVE_YEAR_SETTINGS_ID, create=True,
        )

        values = data.model_dump()
        if values["current_year_balance"] is None:
            values["current_year_balance"] = settings.ANNUAL_LEAVE_GRANT

        employee = Employee(**values, leave_year=year_settings.current_year)
        db.add(employee)
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise _conflict_from(exc, data.employee_number)

        logger.info(
            "Employee %s (%s) onboarded by %s with %d+%d days",
            employee.employee_number, employee.id, actor_id,
            employee.prior_year_balance, employee.current_year_balance,
        )
        notifier.publish_after_commit(
            db, CHANNEL_EMPLOYEES, "create", {"employee_id": str(employee.id)},
        )
        return EmployeeOut.model_validate(employee)

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: EmployeeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeOut:
        """Partial-update identity fields."""
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        changes = data.model_dump(exclude_unset=True)
        if changes:
            for field, value in changes.items():
                setattr(employee, field, value)
            try:
                await db.flush()
            except IntegrityError as exc:
                await db.rollback()
                raise _conflict_from(exc, changes.get("employee_number"))

            logger.info("Employee %s updated by %s: %s", employee.id, actor_id, sorted(changes))
            notifier.publish_after_commit(
                db, CHANNEL_EMPLOYEES, "update", {"employee_id": str(employee.id)},
            )

        out = EmployeeOut.model_validate(employee)
        out.on_leave = employee.id in await on_leave_cache.get(db)
        return out

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def delete_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Remove the employee; their history goes with them."""
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        await db.delete(employee)
        await db.flush()

        logger.info("Employee %s deleted by %s", employee_id, actor_id)
        notifier.publish_after_commit(
            db, CHANNEL_EMPLOYEES, "delete", {"employee_id": str(employee_id)},
        )

    # ── Dashboard counters ──────────────────────────────────────────

    @staticmethod
    async def get_stats(
        db: AsyncSession,
        *,
        as_of: Optional[date] = None,
    ) -> EmployeeStats:
        as_of = as_of or today()
        threshold = settings.LOW_BALANCE_THRESHOLD

        total = (await db.execute(select(func.count()).select_from(Employee))).scalar_one()
        low_balance = (
            await db.execute(
                select(func.count())
                .select_from(Employee)
                .where(Employee.prior_year_balance + Employee.current_year_balance <= threshold)
            )
        ).scalar_one()
        absent = await on_leave_cache.get(db, as_of)

        return EmployeeStats(
            as_of=as_of,
            total_employees=total,
            on_leave=len(absent),
            low_balance=low_balance,
            low_balance_threshold=threshold,
        )
