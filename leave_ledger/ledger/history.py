"""Append-only leave history: writes, containment lookups, ordered listings.

A consumption counts as *active* on a day unless an accrual that cancels it
covers that day. Both the on-leave resolver and the cancellation check go
through the queries below so they agree on that rule.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from leave_ledger.common.constants import TransactionKind
from leave_ledger.common.exceptions import StorageUnavailableException
from leave_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from leave_ledger.ledger.models import LeaveTransaction
from leave_ledger.ledger.schemas import LeaveTransactionOut

logger = logging.getLogger(__name__)


def _not_cancelled_between(start: date, end: date):
    """No cancellation of the outer consumption overlaps ``[start, end]``."""
    cancellation = aliased(LeaveTransaction)
    return ~exists().where(
        cancellation.cancels_transaction_id == LeaveTransaction.id,
        cancellation.start_date <= end,
        cancellation.end_date >= start,
    )


def _submitted(entry) -> datetime:
    # Backends without timezone support hand back naive UTC values.
    stamp = entry.submitted_at
    return stamp if stamp.tzinfo is not None else stamp.replace(tzinfo=timezone.utc)


def _most_specific(entries) -> Optional[LeaveTransaction]:
    """Shortest covering range first, then the most recently submitted."""
    newest_first = sorted(entries, key=lambda e: (_submitted(e), e.id), reverse=True)
    return min(newest_first, key=lambda e: e.end_date - e.start_date, default=None)


def _newest_first():
    return (LeaveTransaction.submitted_at.desc(), LeaveTransaction.id.desc())


class HistoryStore:
    """Async access to the ``leave_transactions`` log."""

    # ─────────────────────────────────────────────────────────────────
    # Write
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def append(db: AsyncSession, entry: LeaveTransaction) -> uuid.UUID:
        """Add *entry* and flush it together with any pending balance change."""
        db.add(entry)
        try:
            await db.flush()
        except (OperationalError, InterfaceError) as exc:
            logger.exception(
                "History append failed for employee %s", entry.employee_id,
            )
            raise StorageUnavailableException() from exc
        return entry.id

    # ─────────────────────────────────────────────────────────────────
    # Containment lookups
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def query_containing(
        db: AsyncSession,
        employee_id: uuid.UUID,
        on_date: date,
        *,
        kind: TransactionKind = TransactionKind.consumption,
    ) -> Optional[LeaveTransaction]:
        """The most specific active entry of *kind* whose range covers *on_date*."""
        query = (
            select(LeaveTransaction)
            .where(
                LeaveTransaction.employee_id == employee_id,
                LeaveTransaction.kind == kind,
                LeaveTransaction.start_date <= on_date,
                LeaveTransaction.end_date >= on_date,
            )
        )
        if kind == TransactionKind.consumption:
            query = query.where(_not_cancelled_between(on_date, on_date))

        result = await db.execute(query)
        return _most_specific(result.scalars().all())

    @staticmethod
    async def find_cancellable(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> Optional[LeaveTransaction]:
        """The consumption fully containing ``[start_date, end_date]`` with
        none of those days already cancelled."""
        result = await db.execute(
            select(LeaveTransaction)
            .where(
                LeaveTransaction.employee_id == employee_id,
                LeaveTransaction.kind == TransactionKind.consumption,
                LeaveTransaction.start_date <= start_date,
                LeaveTransaction.end_date >= end_date,
                _not_cancelled_between(start_date, end_date),
            )
        )
        return _most_specific(result.scalars().all())

    @staticmethod
    async def cancelled_days(db: AsyncSession, consumption_id: uuid.UUID) -> int:
        """Days already given back against *consumption_id*."""
        result = await db.execute(
            select(func.coalesce(func.sum(LeaveTransaction.days), 0)).where(
                LeaveTransaction.cancels_transaction_id == consumption_id,
            )
        )
        return int(result.scalar_one())

    @staticmethod
    async def employees_on_leave(db: AsyncSession, on_date: date) -> set[uuid.UUID]:
        """Ids of every employee with an active consumption covering *on_date*."""
        result = await db.execute(
            select(LeaveTransaction.employee_id)
            .where(
                LeaveTransaction.kind == TransactionKind.consumption,
                LeaveTransaction.start_date <= on_date,
                LeaveTransaction.end_date >= on_date,
                _not_cancelled_between(on_date, on_date),
            )
            .distinct()
        )
        return set(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Listings
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_for_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
    ) -> PaginatedResponse:
        """Paginated history for one employee, most recent first."""
        query = (
            select(LeaveTransaction)
            .where(LeaveTransaction.employee_id == employee_id)
            .order_by(*_newest_first())
        )
        return await paginate(
            db, query, pagination, transform=LeaveTransactionOut.model_validate,
        )

    @staticmethod
    async def iter_for_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        batch_size: int = 100,
        after: Optional[tuple[datetime, uuid.UUID]] = None,
    ) -> AsyncIterator[LeaveTransaction]:
        """Lazily yield history, most recent first, one keyset page at a time.

        Pass the ``(submitted_at, id)`` of the last entry seen as *after* to
        restart where a previous iteration stopped.
        """
        cursor = after
        while True:
            query = (
                select(LeaveTransaction)
                .where(LeaveTransaction.employee_id == employee_id)
                .order_by(*_newest_first())
                .limit(batch_size)
            )
            if cursor is not None:
                submitted_at, last_id = cursor
                query = query.where(
                    or_(
                        LeaveTransaction.submitted_at < submitted_at,
                        and_(
                            LeaveTransaction.submitted_at == submitted_at,
                            LeaveTransaction.id < last_id,
                        ),
                    )
                )

            rows = (await db.execute(query)).scalars().all()
            for row in rows:
                yield row
            if len(rows) < batch_size:
                return
            cursor = (rows[-1].submitted_at, rows[-1].id)

    @staticmethod
    async def list_all(db: AsyncSession) -> list[LeaveTransaction]:
        """Every entry, most recent first."""
        result = await db.execute(select(LeaveTransaction).order_by(*_newest_first()))
        return list(result.scalars().all())
