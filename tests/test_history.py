"""Tests for the append-only history store — containment, cancellation, listing."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import TransactionKind
from leave_ledger.common.exceptions import StorageUnavailableException
from leave_ledger.common.pagination import PaginationParams
from leave_ledger.employees.models import Employee
from leave_ledger.ledger.history import HistoryStore, _most_specific
from leave_ledger.ledger.models import LeaveTransaction
from tests.conftest import ADMIN_ID, _insert_employee

BASE_TIME = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def _entry(
    employee: Employee,
    *,
    kind: TransactionKind = TransactionKind.consumption,
    start: Optional[date] = None,
    end: Optional[date] = None,
    days: int = 1,
    minutes: int = 0,
    cancels: Optional[LeaveTransaction] = None,
) -> LeaveTransaction:
    sign = -1 if kind == TransactionKind.consumption else 1
    return LeaveTransaction(
        employee_id=employee.id,
        kind=kind,
        days=days,
        start_date=start,
        end_date=end,
        reason="test entry",
        prior_year_delta=0,
        current_year_delta=sign * days,
        cancels_transaction_id=cancels.id if cancels is not None else None,
        admin_id=ADMIN_ID,
        submitted_at=BASE_TIME + timedelta(minutes=minutes),
    )


async def _append(db: AsyncSession, employee: Employee, **kwargs) -> LeaveTransaction:
    entry = _entry(employee, **kwargs)
    await HistoryStore.append(db, entry)
    return entry


# ═════════════════════════════════════════════════════════════════════
# APPEND
# ═════════════════════════════════════════════════════════════════════


class TestAppend:

    async def test_append_returns_id(self, db: AsyncSession):
        emp = await _insert_employee(db)
        entry = _entry(emp, start=date(2025, 3, 3), end=date(2025, 3, 4), days=2)

        entry_id = await HistoryStore.append(db, entry)

        assert entry_id == entry.id
        assert await db.get(LeaveTransaction, entry_id) is entry

    async def test_storage_failure_is_reported(self, db: AsyncSession, monkeypatch):
        emp = await _insert_employee(db)

        async def _broken_flush(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "flush", _broken_flush)
        with pytest.raises(StorageUnavailableException) as exc_info:
            await HistoryStore.append(db, _entry(emp, start=date(2025, 3, 3), end=date(2025, 3, 3)))
        assert exc_info.value.headers == {"Retry-After": "5"}


# ═════════════════════════════════════════════════════════════════════
# CONTAINMENT
# ═════════════════════════════════════════════════════════════════════


class TestQueryContaining:

    async def test_covering_consumption_found(self, db: AsyncSession):
        emp = await _insert_employee(db)
        leave = await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 14), days=10)

        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 10)) is leave
        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 3)) is leave
        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 14)) is leave

    async def test_outside_range_is_none(self, db: AsyncSession):
        emp = await _insert_employee(db)
        await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 14), days=10)

        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 1)) is None
        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 15)) is None

    async def test_shortest_covering_range_wins(self, db: AsyncSession):
        emp = await _insert_employee(db)
        await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 14), days=10)
        short = await _append(
            db, emp, start=date(2025, 3, 10), end=date(2025, 3, 11), days=2, minutes=1,
        )

        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 10)) is short

    async def test_equal_ranges_prefer_most_recent(self, db: AsyncSession):
        emp = await _insert_employee(db)
        await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 4), days=2)
        newer = await _append(
            db, emp, start=date(2025, 3, 3), end=date(2025, 3, 4), days=2, minutes=5,
        )

        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 4)) is newer

    def test_naive_submission_times_read_as_utc(self):
        def entry(submitted_at: datetime, id_int: int) -> SimpleNamespace:
            return SimpleNamespace(
                id=uuid.UUID(int=id_int),
                start_date=date(2025, 3, 3),
                end_date=date(2025, 3, 4),
                submitted_at=submitted_at,
            )

        jakarta = timezone(timedelta(hours=7))
        aware = entry(datetime(2025, 3, 1, 15, 30, tzinfo=jakarta), 1)  # 08:30 UTC
        naive = entry(datetime(2025, 3, 1, 9, 0), 2)                    # 09:00 UTC
        same_time = entry(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc), 3)

        assert _most_specific([aware, naive]) is naive
        assert _most_specific([naive, aware]) is naive
        assert _most_specific([aware, naive, same_time]) is same_time
        assert _most_specific([]) is None

    async def test_cancelled_days_are_ignored(self, db: AsyncSession):
        emp = await _insert_employee(db)
        leave = await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 14), days=10)
        await _append(
            db, emp,
            kind=TransactionKind.accrual,
            start=date(2025, 3, 10), end=date(2025, 3, 11), days=2,
            minutes=1, cancels=leave,
        )

        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 10)) is None
        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 12)) is leave

    async def test_other_employees_not_matched(self, db: AsyncSession):
        emp = await _insert_employee(db)
        other = await _insert_employee(db, name="Sari Dewi")
        await _append(db, other, start=date(2025, 3, 3), end=date(2025, 3, 7), days=5)

        assert await HistoryStore.query_containing(db, emp.id, date(2025, 3, 5)) is None


class TestFindCancellable:

    async def test_contained_range_matches(self, db: AsyncSession):
        emp = await _insert_employee(db)
        leave = await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 14), days=10)

        found = await HistoryStore.find_cancellable(db, emp.id, date(2025, 3, 5), date(2025, 3, 7))
        assert found is leave

    async def test_range_sticking_out_does_not_match(self, db: AsyncSession):
        emp = await _insert_employee(db)
        await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 7), days=5)

        assert await HistoryStore.find_cancellable(
            db, emp.id, date(2025, 3, 5), date(2025, 3, 10),
        ) is None

    async def test_already_cancelled_overlap_does_not_match(self, db: AsyncSession):
        emp = await _insert_employee(db)
        leave = await _append(db, emp, start=date(2025, 3, 3), end=date(2025, 3, 14), days=10)
        await _append(
            db, emp,
            kind=TransactionKind.accrual,
            start=date(2025, 3, 3), end=date(2025, 3, 5), days=3,
            minutes=1, cancels=leave,
        )

        assert await HistoryStore.find_cancellable(
            db, emp.id, date(2025, 3, 4), date(2025, 3, 6),
        ) is None
        # Days not yet cancelled can still be given back
        assert await HistoryStore.find_cancellable(
            db, emp.id, date(2025, 3, 10), date(2025, 3, 14),
        ) is leave
        assert await HistoryStore.cancelled_days(db, leave.id) == 3


class TestEmployeesOnLeave:

    async def test_set_of_ids(self, db: AsyncSession):
        a = await _insert_employee(db, name="Andi")
        b = await _insert_employee(db, name="Bambang")
        await _insert_employee(db, name="Citra")
        await _append(db, a, start=date(2025, 3, 3), end=date(2025, 3, 7), days=5)
        await _append(db, b, start=date(2025, 3, 5), end=date(2025, 3, 5), days=1)

        assert await HistoryStore.employees_on_leave(db, date(2025, 3, 5)) == {a.id, b.id}
        assert await HistoryStore.employees_on_leave(db, date(2025, 3, 6)) == {a.id}
        assert await HistoryStore.employees_on_leave(db, date(2025, 3, 10)) == set()


# ═════════════════════════════════════════════════════════════════════
# LISTINGS
# ═════════════════════════════════════════════════════════════════════


class TestListings:

    async def test_list_for_employee_most_recent_first(self, db: AsyncSession):
        emp = await _insert_employee(db)
        for i in range(3):
            await _append(db, emp, kind=TransactionKind.accrual, days=i + 1, minutes=i)

        page = await HistoryStore.list_for_employee(db, emp.id, PaginationParams(page=1, page_size=2))

        assert [e.days for e in page.data] == [3, 2]
        assert page.meta.total == 3
        assert page.meta.total_pages == 2
        assert page.meta.has_next is True

    async def test_iter_for_employee_walks_everything_lazily(self, db: AsyncSession):
        emp = await _insert_employee(db)
        for i in range(5):
            await _append(db, emp, kind=TransactionKind.accrual, days=i + 1, minutes=i)

        seen = [e.days async for e in HistoryStore.iter_for_employee(db, emp.id, batch_size=2)]

        assert seen == [5, 4, 3, 2, 1]

    async def test_iter_for_employee_restarts_after_cursor(self, db: AsyncSession):
        emp = await _insert_employee(db)
        for i in range(4):
            await _append(db, emp, kind=TransactionKind.accrual, days=i + 1, minutes=i)

        iterator = HistoryStore.iter_for_employee(db, emp.id, batch_size=3)
        first = await iterator.__anext__()
        await iterator.aclose()

        rest = [
            e.days
            async for e in HistoryStore.iter_for_employee(
                db, emp.id, batch_size=3, after=(first.submitted_at, first.id),
            )
        ]
        assert first.days == 4
        assert rest == [3, 2, 1]

    async def test_iter_for_unknown_employee_is_empty(self, db: AsyncSession):
        seen = [e async for e in HistoryStore.iter_for_employee(db, uuid.uuid4())]
        assert seen == []
