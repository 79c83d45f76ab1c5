"""Ledger service layer — take, add and cancel leave against the two buckets.

Business logic:
  - Date ranges validated before any row is touched
  - Employee row locked for the read-modify-write; the version column guards
    against a concurrent writer that slipped in anyway
  - Bucket update and history entry flushed together; a ``history`` change event
    goes out once the caller commits
  - Read-only snapshot (balances, history, on-leave set) for reporting
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leave_ledger.common.constants import CHANNEL_HISTORY, TransactionKind
from leave_ledger.common.events import notifier
from leave_ledger.common.exceptions import (
    ConcurrentUpdateException,
    InvalidDateRangeException,
    NoMatchingLeavePeriodException,
    NotFoundException,
    StorageUnavailableException,
    ValidationException,
)
from leave_ledger.config import settings
from leave_ledger.employees.models import Employee
from leave_ledger.employees.schemas import EmployeeOut
from leave_ledger.employees.service import rank_then_name
from leave_ledger.ledger.balance import Buckets, accrue, consume, restore
from leave_ledger.ledger.history import HistoryStore
from leave_ledger.ledger.models import LeaveTransaction
from leave_ledger.ledger.schemas import (
    AddLeaveRequest,
    CancelLeaveRequest,
    LedgerResult,
    LedgerSnapshot,
    LeaveTransactionOut,
    OnLeaveStatusOut,
    TakeLeaveRequest,
)
from leave_ledger.ledger.status import is_on_leave, on_leave_employee_ids, today
from leave_ledger.ledger.workdays import transaction_days

logger = logging.getLogger(__name__)


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise InvalidDateRangeException(start_date, end_date)


def _buckets(employee: Employee) -> Buckets:
    return Buckets(prior=employee.prior_year_balance, current=employee.current_year_balance)


# ═════════════════════════════════════════════════════════════════════
# LedgerService
# ═════════════════════════════════════════════════════════════════════


class LedgerService:
    """Async balance mutations and read views over the leave ledger."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _lock_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        """Load *employee_id* with a row lock, refreshing any cached copy."""
        try:
            result = await db.execute(
                select(Employee)
                .where(Employee.id == employee_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        except (OperationalError, InterfaceError) as exc:
            logger.exception("Could not lock employee %s", employee_id)
            raise StorageUnavailableException() from exc

        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _record(
        db: AsyncSession,
        employee: Employee,
        after: Buckets,
        *,
        action: str,
        kind: TransactionKind,
        days: int,
        reason: str,
        admin_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        cancels: Optional[LeaveTransaction] = None,
    ) -> LedgerResult:
        """Apply *after* to the employee and append the matching history entry."""
        before = _buckets(employee)
        prior_delta, current_delta = after.delta(before)

        employee.prior_year_balance = after.prior
        employee.current_year_balance = after.current

        entry = LeaveTransaction(
            employee_id=employee.id,
            kind=kind,
            days=days,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            prior_year_delta=prior_delta,
            current_year_delta=current_delta,
            cancels_transaction_id=cancels.id if cancels is not None else None,
            admin_id=admin_id,
            submitted_at=datetime.now(timezone.utc),
        )
        try:
            await HistoryStore.append(db, entry)
        except StaleDataError as exc:
            raise ConcurrentUpdateException("Employee", employee.id) from exc

        logger.info(
            "Leave %s: employee=%s days=%d buckets %d+%d -> %d+%d admin=%s",
            action, employee.id, days,
            before.prior, before.current, after.prior, after.current, admin_id,
        )

        notifier.publish_after_commit(
            db, CHANNEL_HISTORY, action,
            {"employee_id": str(employee.id), "transaction_id": str(entry.id)},
        )

        employee_out = EmployeeOut.model_validate(employee)
        employee_out.on_leave = await is_on_leave(db, employee.id)
        return LedgerResult(
            employee=employee_out,
            transaction=LeaveTransactionOut.model_validate(entry),
            message=(
                f"{days} day(s) {action}: balance is now "
                f"{after.prior} prior + {after.current} current = {after.total}."
            ),
        )

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def take_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: TakeLeaveRequest,
        admin_id: uuid.UUID,
    ) -> LedgerResult:
        """Record a consumption; prior-year days go first."""
        _check_range(data.start_date, data.end_date)
        start, end, computed = transaction_days(data.start_date, data.end_date)
        days = data.days or computed

        employee = await LedgerService._lock_employee(db, employee_id)
        after = consume(_buckets(employee), days)

        return await LedgerService._record(
            db, employee, after,
            action="take",
            kind=TransactionKind.consumption,
            days=days,
            reason=data.reason,
            admin_id=admin_id,
            start_date=start,
            end_date=end,
        )

    @staticmethod
    async def add_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: AddLeaveRequest,
        admin_id: uuid.UUID,
    ) -> LedgerResult:
        """Manual top-up to the current-year bucket."""
        employee = await LedgerService._lock_employee(db, employee_id)
        after = accrue(_buckets(employee), data.days)

        return await LedgerService._record(
            db, employee, after,
            action="add",
            kind=TransactionKind.accrual,
            days=data.days,
            reason=data.reason,
            admin_id=admin_id,
        )

    @staticmethod
    async def cancel_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: CancelLeaveRequest,
        admin_id: uuid.UUID,
    ) -> LedgerResult:
        """Give back days of a recorded consumption.

        The range must sit inside one consumption none of whose days in that
        range were cancelled before. Restored days refill the prior-year
        bucket up to the annual grant, the rest lands in the current year.
        """
        _check_range(data.start_date, data.end_date)
        start, end, computed = transaction_days(data.start_date, data.end_date)
        days = data.days or computed
        if days > computed:
            raise ValidationException({
                "days": [f"At most {computed} day(s) fall inside the cancelled range."],
            })

        employee = await LedgerService._lock_employee(db, employee_id)

        consumption = await HistoryStore.find_cancellable(db, employee.id, start, end)
        if consumption is None:
            raise NoMatchingLeavePeriodException(start, end)

        remaining = consumption.days - await HistoryStore.cancelled_days(db, consumption.id)
        if days > remaining:
            raise ValidationException({
                "days": [f"Only {remaining} day(s) of this leave can still be cancelled."],
            })

        after = restore(_buckets(employee), days, settings.ANNUAL_LEAVE_GRANT)

        return await LedgerService._record(
            db, employee, after,
            action="cancel",
            kind=TransactionKind.accrual,
            days=days,
            reason=data.reason,
            admin_id=admin_id,
            start_date=start,
            end_date=end,
            cancels=consumption,
        )

    # ─────────────────────────────────────────────────────────────────
    # Read views
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def on_leave_status(
        db: AsyncSession,
        employee_id: uuid.UUID,
        as_of: Optional[date] = None,
    ) -> OnLeaveStatusOut:
        if await db.get(Employee, employee_id) is None:
            raise NotFoundException("Employee", str(employee_id))

        as_of = as_of or today()
        entry = await HistoryStore.query_containing(db, employee_id, as_of)
        return OnLeaveStatusOut(
            employee_id=employee_id,
            as_of=as_of,
            on_leave=entry is not None,
            transaction=LeaveTransactionOut.model_validate(entry) if entry else None,
        )

    @staticmethod
    async def snapshot(
        db: AsyncSession,
        as_of: Optional[date] = None,
    ) -> LedgerSnapshot:
        """Balances, full history and the on-leave set, read in one session."""
        as_of = as_of or today()
        on_leave = await on_leave_employee_ids(db, as_of)

        result = await db.execute(select(Employee).order_by(*rank_then_name()))
        balances = []
        for employee in result.scalars().all():
            out = EmployeeOut.model_validate(employee)
            out.on_leave = employee.id in on_leave
            balances.append(out)

        history = await HistoryStore.list_all(db)
        return LedgerSnapshot(
            as_of=as_of,
            balances=balances,
            history=[LeaveTransactionOut.model_validate(e) for e in history],
            on_leave=sorted(on_leave, key=str),
        )
