"""Employee module test suite — onboarding, listing order, search, on-leave
filter, identity updates, deletion and dashboard counters.

Tests exercise the service layer and the HTTP API (via router).
Uses the shared conftest.py pattern with in-memory SQLite.
"""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import Rank
from leave_ledger.common.exceptions import ConflictError, NotFoundException
from leave_ledger.common.pagination import PaginationParams
from leave_ledger.employees.models import Employee
from leave_ledger.employees.schemas import EmployeeCreate, EmployeeUpdate
from leave_ledger.employees.service import EmployeeService
from leave_ledger.ledger.models import LeaveTransaction
from leave_ledger.ledger.schemas import TakeLeaveRequest
from leave_ledger.ledger.service import LedgerService
from leave_ledger.ledger.status import today
from leave_ledger.rollover.models import LeaveYearSettings
from tests.conftest import ADMIN_ID, TestSessionFactory, _insert_employee

ON_LEAVE_DAY = date(2025, 3, 4)


def _payload(**overrides) -> dict:
    data = {
        "employee_number": "198501012010011001",
        "name": "Rina Marlina",
        "rank": "KASI",
        "department": "Seksi Izin Tinggal",
    }
    data.update(overrides)
    return data


def _page(size: int = 50) -> PaginationParams:
    return PaginationParams(page=1, page_size=size)


async def _take_leave(db: AsyncSession, employee: Employee) -> None:
    await LedgerService.take_leave(
        db, employee.id,
        TakeLeaveRequest(start_date=date(2025, 3, 3), end_date=date(2025, 3, 5), reason="Cuti"),
        ADMIN_ID,
    )


# ═════════════════════════════════════════════════════════════════════
# SERVICE LAYER
# ═════════════════════════════════════════════════════════════════════


class TestEmployeeCreate:

    async def test_defaults_to_full_grant(self, db: AsyncSession, year_settings):
        out = await EmployeeService.create_employee(
            db, EmployeeCreate(**_payload()), actor_id=ADMIN_ID,
        )

        assert out.rank == Rank.kasi
        assert out.prior_year_balance == 0
        assert out.current_year_balance == 12
        assert out.total_balance == 12
        assert out.leave_year == 2025
        assert out.on_leave is False

    async def test_explicit_opening_balances(self, db: AsyncSession, year_settings):
        out = await EmployeeService.create_employee(
            db, EmployeeCreate(**_payload(prior_year_balance=6, current_year_balance=9)),
        )

        assert (out.prior_year_balance, out.current_year_balance) == (6, 9)

    async def test_settings_created_for_current_year(self, db: AsyncSession):
        out = await EmployeeService.create_employee(db, EmployeeCreate(**_payload()))

        assert out.leave_year == today().year
        row = await db.get(LeaveYearSettings, 1)
        assert row.current_year == today().year

    async def test_strips_whitespace(self, db: AsyncSession, year_settings):
        out = await EmployeeService.create_employee(
            db, EmployeeCreate(**_payload(name="  Rina Marlina  ")),
        )
        assert out.name == "Rina Marlina"

    async def test_duplicate_employee_number(self, db: AsyncSession, year_settings):
        await EmployeeService.create_employee(db, EmployeeCreate(**_payload()))
        await db.commit()

        with pytest.raises(ConflictError) as exc_info:
            await EmployeeService.create_employee(
                db, EmployeeCreate(**_payload(name="Someone Else")),
            )
        assert exc_info.value.errors == {
            "employee_number": ["'198501012010011001' is already in use."],
        }


class TestEmployeeListing:

    async def test_ordered_by_rank_then_name(self, db: AsyncSession, year_settings):
        await _insert_employee(db, name="Yusuf", rank=Rank.cpns)
        await _insert_employee(db, name="Bambang", rank=Rank.jft)
        await _insert_employee(db, name="Agus", rank=Rank.jft)
        await _insert_employee(db, name="Hendra", rank=Rank.kakanim)
        await _insert_employee(db, name="Lestari", rank=Rank.kasi)

        page = await EmployeeService.list_employees(db, _page())

        assert [e.name for e in page.data] == ["Hendra", "Lestari", "Agus", "Bambang", "Yusuf"]
        assert page.meta.total == 5

    async def test_search_name_or_number(self, db: AsyncSession, year_settings):
        await _insert_employee(db, name="Dewi Lestari", employee_number="199001")
        await _insert_employee(db, name="Eko Prasetyo", employee_number="199002")

        by_name = await EmployeeService.list_employees(db, _page(), search="lestari")
        by_number = await EmployeeService.list_employees(db, _page(), search="99002")

        assert [e.name for e in by_name.data] == ["Dewi Lestari"]
        assert [e.name for e in by_number.data] == ["Eko Prasetyo"]

    async def test_pagination(self, db: AsyncSession, year_settings):
        for i in range(5):
            await _insert_employee(db, name=f"Pegawai {i}")

        page = await EmployeeService.list_employees(db, PaginationParams(page=2, page_size=2))

        assert [e.name for e in page.data] == ["Pegawai 2", "Pegawai 3"]
        assert page.meta.has_prev is True
        assert page.meta.has_next is True

    async def test_on_leave_filter(self, db: AsyncSession, employee: Employee):
        present = await _insert_employee(db, name="Zainal")
        await db.commit()
        await _take_leave(db, employee)

        away = await EmployeeService.list_employees(
            db, _page(), on_leave=True, as_of=ON_LEAVE_DAY,
        )
        here = await EmployeeService.list_employees(
            db, _page(), on_leave=False, as_of=ON_LEAVE_DAY,
        )
        everyone = await EmployeeService.list_employees(db, _page(), as_of=ON_LEAVE_DAY)

        assert [e.id for e in away.data] == [employee.id]
        assert away.data[0].on_leave is True
        assert [e.id for e in here.data] == [present.id]
        assert {e.id: e.on_leave for e in everyone.data} == {
            employee.id: True, present.id: False,
        }

    async def test_get_employee_not_found(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await EmployeeService.get_employee(db, uuid.uuid4())


class TestEmployeeUpdateDelete:

    async def test_update_identity_fields(self, db: AsyncSession, employee: Employee):
        out = await EmployeeService.update_employee(
            db, employee.id, EmployeeUpdate(rank=Rank.kasubsi, department="Seksi Inteldakim"),
        )

        assert out.rank == Rank.kasubsi
        assert out.department == "Seksi Inteldakim"
        assert (out.prior_year_balance, out.current_year_balance) == (4, 12)

    async def test_update_not_found(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await EmployeeService.update_employee(db, uuid.uuid4(), EmployeeUpdate(name="X"))

    async def test_delete_removes_history(self, db: AsyncSession, employee: Employee):
        await _take_leave(db, employee)
        await db.commit()

        await EmployeeService.delete_employee(db, employee.id)
        await db.commit()

        async with TestSessionFactory() as session:
            assert await session.get(Employee, employee.id) is None
            remaining = (
                await session.execute(select(func.count()).select_from(LeaveTransaction))
            ).scalar_one()
        assert remaining == 0

    async def test_delete_not_found(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await EmployeeService.delete_employee(db, uuid.uuid4())


class TestEmployeeStats:

    async def test_counters(self, db: AsyncSession, employee: Employee):
        await _insert_employee(db, name="Hampir Habis", prior_year_balance=1, current_year_balance=2)
        await _insert_employee(db, name="Habis", prior_year_balance=0, current_year_balance=0)
        await db.commit()
        await _take_leave(db, employee)

        stats = await EmployeeService.get_stats(db, as_of=ON_LEAVE_DAY)

        assert stats.as_of == ON_LEAVE_DAY
        assert stats.total_employees == 3
        assert stats.on_leave == 1
        assert stats.low_balance == 2
        assert stats.low_balance_threshold == 3


# ═════════════════════════════════════════════════════════════════════
# HTTP API
# ═════════════════════════════════════════════════════════════════════


class TestEmployeeAPI:

    async def test_create_requires_admin(self, client: AsyncClient, viewer_headers, year_settings):
        resp = await client.post("/api/v1/employees", json=_payload(), headers=viewer_headers)

        assert resp.status_code == 403
        assert resp.headers["content-type"] == "application/problem+json"
        assert resp.json()["type"].endswith("/forbidden")

    async def test_requires_token(self, client: AsyncClient):
        resp = await client.get("/api/v1/employees")
        assert resp.status_code == 401

    async def test_create_and_fetch(self, client: AsyncClient, admin_headers, year_settings):
        resp = await client.post("/api/v1/employees", json=_payload(), headers=admin_headers)
        assert resp.status_code == 201
        created = resp.json()
        assert created["current_year_balance"] == 12

        resp = await client.get(f"/api/v1/employees/{created['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["employee_number"] == "198501012010011001"

    async def test_duplicate_is_conflict(self, client: AsyncClient, admin_headers, year_settings):
        await client.post("/api/v1/employees", json=_payload(), headers=admin_headers)
        resp = await client.post("/api/v1/employees", json=_payload(), headers=admin_headers)

        assert resp.status_code == 409
        assert resp.json()["type"].endswith("/conflict")

    async def test_negative_balance_rejected(self, client: AsyncClient, admin_headers, year_settings):
        resp = await client.post(
            "/api/v1/employees", json=_payload(prior_year_balance=-1), headers=admin_headers,
        )

        assert resp.status_code == 422
        assert "prior_year_balance" in resp.json()["errors"]

    async def test_list_for_viewer(self, client: AsyncClient, viewer_headers, employee: Employee):
        resp = await client.get("/api/v1/employees?search=budi", headers=viewer_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["id"] == str(employee.id)
        assert body["data"][0]["on_leave"] is False

    async def test_patch_ignores_balances(self, client: AsyncClient, admin_headers, employee: Employee):
        resp = await client.patch(
            f"/api/v1/employees/{employee.id}",
            json={"name": "Budi S.", "current_year_balance": 99},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["name"] == "Budi S."
        assert resp.json()["current_year_balance"] == 12

    async def test_delete(self, client: AsyncClient, admin_headers, employee: Employee):
        resp = await client.delete(f"/api/v1/employees/{employee.id}", headers=admin_headers)
        assert resp.status_code == 204

        resp = await client.get(f"/api/v1/employees/{employee.id}", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["type"].endswith("/not-found")

    async def test_stats(self, client: AsyncClient, viewer_headers, employee: Employee):
        resp = await client.get(
            "/api/v1/employees/stats?as_of=2025-03-04", headers=viewer_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["total_employees"] == 1
        assert resp.json()["on_leave"] == 0
