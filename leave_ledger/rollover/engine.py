"""Year-rollover engine — advance, revert to previous, revert to next.

Every employee row carries a short chain of buckets::

    two_years_ago <- prior <- current <- next_year_backup

Advancing shifts the chain one step towards the past and grants a fresh
current year; reverting to the previous year shifts it back and keeps the
abandoned current year as a forward backup, which revert-to-next restores.

Two strategies:

``bulk``
    One set-based UPDATE over every employee plus the settings change, in a
    single transaction. All or nothing.

``batched``
    Employee ids are walked in id order, one committed transaction per
    batch. Each row is only touched while its ``leave_year`` still equals
    the run's source year, so re-running a batch never applies twice. The
    run row records the moved ids and the cursor after every batch. A
    failure after the first batch leaves the run ``failed`` and halts every
    further rollover until the run is resumed or resolved.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_ledger.common.constants import (
    CHANNEL_ROLLOVER,
    RolloverOperation,
    RolloverStatus,
    RolloverStrategy,
)
from leave_ledger.common.events import notifier
from leave_ledger.common.exceptions import (
    NotFoundException,
    PartialRolloverFailure,
    RolloverNotAvailableException,
    StorageUnavailableException,
)
from leave_ledger.config import settings
from leave_ledger.employees.models import Employee
from leave_ledger.ledger.status import today
from leave_ledger.rollover.models import LeaveYearSettings, RolloverRun
from leave_ledger.rollover.schemas import RolloverRunOut, RolloverSettingsOut

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (RolloverStatus.running, RolloverStatus.failed)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def load_year_settings(
    db: AsyncSession,
    settings_id: int,
    *,
    create: bool = False,
    lock: bool = False,
) -> LeaveYearSettings:
    """Fetch the settings row; optionally create it for the current calendar year."""
    query = select(LeaveYearSettings).where(LeaveYearSettings.id == settings_id)
    if lock:
        query = query.with_for_update()
    year_settings = (await db.execute(query)).scalars().first()

    if year_settings is None:
        if not create:
            raise NotFoundException("LeaveYearSettings", settings_id)
        year_settings = LeaveYearSettings(id=settings_id, current_year=today().year)
        db.add(year_settings)
        await db.flush()
        logger.info("Leave year settings %s initialised at %s", settings_id, year_settings.current_year)
    return year_settings


def _row_values(operation: RolloverOperation, grant: int, to_year: int) -> dict[str, Any]:
    """SET clause for one operation. Right-hand sides read the pre-update row."""
    if operation == RolloverOperation.revert_previous:
        values: dict[str, Any] = {
            "next_year_backup_balance": Employee.current_year_balance,
            "current_year_balance": Employee.prior_year_balance,
            "prior_year_balance": Employee.two_years_ago_balance,
            "two_years_ago_balance": 0,
        }
    else:
        if operation == RolloverOperation.revert_next:
            current = func.coalesce(Employee.next_year_backup_balance, grant)
        else:
            current = grant
        values = {
            "two_years_ago_balance": Employee.prior_year_balance,
            "prior_year_balance": Employee.current_year_balance,
            "current_year_balance": current,
            "next_year_backup_balance": None,
        }

    values.update(
        leave_year=to_year,
        version=Employee.version + 1,
        updated_at=_utcnow(),
    )
    return values


@dataclass(frozen=True)
class RolloverPlan:
    """Where one operation takes the leave year."""

    operation: RolloverOperation
    from_year: int
    to_year: int
    target_previous_year: Optional[int]


# ═════════════════════════════════════════════════════════════════════
# YearRolloverEngine
# ═════════════════════════════════════════════════════════════════════


class YearRolloverEngine:
    """Runs rollover operations against one settings row.

    Each operation opens its own sessions from *session_factory*; callers do
    not pass a request-scoped session.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings_id: int,
        grant: int,
        strategy: RolloverStrategy = RolloverStrategy.bulk,
        batch_size: int = 200,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._session_factory = session_factory
        self.settings_id = settings_id
        self.grant = grant
        self.strategy = RolloverStrategy(strategy)
        self.batch_size = batch_size

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> "YearRolloverEngine":
        return cls(
            session_factory,
            settings_id=settings.LEAVE_YEAR_SETTINGS_ID,
            grant=settings.ANNUAL_LEAVE_GRANT,
            strategy=RolloverStrategy(settings.ROLLOVER_STRATEGY),
            batch_size=settings.ROLLOVER_BATCH_SIZE,
        )

    # ─────────────────────────────────────────────────────────────────
    # Public operations
    # ─────────────────────────────────────────────────────────────────

    async def advance(self, actor_id: Optional[uuid.UUID] = None) -> RolloverRunOut:
        """Move into the next leave year with a fresh grant."""
        return await self._start(RolloverOperation.advance, actor_id)

    async def revert_to_previous(self, actor_id: Optional[uuid.UUID] = None) -> RolloverRunOut:
        """Undo the last advance, keeping the abandoned year as a forward backup."""
        return await self._start(RolloverOperation.revert_previous, actor_id)

    async def revert_to_next(self, actor_id: Optional[uuid.UUID] = None) -> RolloverRunOut:
        """Redo an advance that was reverted, restoring the backed-up current year."""
        return await self._start(RolloverOperation.revert_next, actor_id)

    async def resume(
        self,
        run_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RolloverRunOut:
        """Re-apply a halted run's operation to the rows it has not reached yet."""
        async with self._session_factory() as db:
            async with db.begin():
                run = await self._get_run(db, run_id, lock=True)
                if run.status not in _OPEN_STATUSES:
                    raise RolloverNotAvailableException(
                        f"Rollover run '{run_id}' is {run.status.value}; "
                        "only failed or interrupted runs can be resumed.",
                    )
                year_settings = await load_year_settings(db, self.settings_id, lock=True)
                if year_settings.current_year != run.from_year:
                    raise RolloverNotAvailableException(
                        f"The leave year is {year_settings.current_year}, not "
                        f"{run.from_year}; resolve run '{run_id}' instead.",
                    )

                run.status = RolloverStatus.running
                run.error = None
                run.finished_at = None
                plan = RolloverPlan(
                    run.operation, run.from_year, run.to_year, run.target_previous_year,
                )
                updated = [uuid.UUID(i) for i in run.updated_employee_ids]
                cursor = run.cursor

        logger.info(
            "Resuming rollover run %s (%s %s -> %s) after %d employee(s)",
            run_id, plan.operation.value, plan.from_year, plan.to_year, len(updated),
        )
        return await self._drive(run_id, plan, actor_id, cursor=cursor, updated=updated)

    async def resolve(
        self,
        run_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        note: Optional[str] = None,
    ) -> RolloverRunOut:
        """Close a halted run after manual repair; rollover is allowed again."""
        async with self._session_factory() as db:
            async with db.begin():
                run = await self._get_run(db, run_id, lock=True)
                if run.status not in _OPEN_STATUSES:
                    raise RolloverNotAvailableException(
                        f"Rollover run '{run_id}' is {run.status.value}; nothing to resolve.",
                    )
                run.status = RolloverStatus.resolved
                run.finished_at = _utcnow()
                resolution = f"Resolved by {actor_id}" + (f": {note}" if note else "")
                run.error = f"{run.error}\n{resolution}" if run.error else resolution
            out = RolloverRunOut.model_validate(run)

        logger.warning("Rollover run %s marked resolved by %s", run_id, actor_id)
        await notifier.publish(CHANNEL_ROLLOVER, "resolve", {"run_id": str(run_id)})
        return out

    async def get_settings(self) -> RolloverSettingsOut:
        async with self._session_factory() as db:
            async with db.begin():
                year_settings = await load_year_settings(db, self.settings_id, create=True)
                halted = await self._open_run(db)
                can_revert_next = await self._has_forward_backup(db)
            return RolloverSettingsOut(
                current_year=year_settings.current_year,
                previous_year=year_settings.previous_year,
                can_revert_previous=year_settings.previous_year is not None,
                can_revert_next=can_revert_next,
                halted_run_id=halted.id if halted is not None else None,
                strategy=self.strategy,
                updated_at=year_settings.updated_at,
                updated_by=year_settings.updated_by,
            )

    async def list_runs(self, limit: int = 20) -> list[RolloverRunOut]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(RolloverRun)
                .where(RolloverRun.settings_id == self.settings_id)
                .order_by(RolloverRun.started_at.desc())
                .limit(limit)
            )
            return [RolloverRunOut.model_validate(r) for r in result.scalars().all()]

    # ─────────────────────────────────────────────────────────────────
    # Preconditions
    # ─────────────────────────────────────────────────────────────────

    async def _get_run(self, db: AsyncSession, run_id: uuid.UUID, *, lock: bool = False) -> RolloverRun:
        run = await db.get(RolloverRun, run_id, with_for_update=lock)
        if run is None or run.settings_id != self.settings_id:
            raise NotFoundException("RolloverRun", str(run_id))
        return run

    async def _open_run(self, db: AsyncSession) -> Optional[RolloverRun]:
        result = await db.execute(
            select(RolloverRun)
            .where(
                RolloverRun.settings_id == self.settings_id,
                RolloverRun.status.in_(_OPEN_STATUSES),
            )
            .order_by(RolloverRun.started_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _ensure_not_halted(self, db: AsyncSession) -> None:
        run = await self._open_run(db)
        if run is None:
            return
        if run.status == RolloverStatus.failed:
            raise PartialRolloverFailure(run.id, run.updated_employee_ids)
        raise RolloverNotAvailableException(
            f"Rollover run '{run.id}' has not finished; resume or resolve it first.",
        )

    async def _has_forward_backup(self, db: AsyncSession) -> bool:
        result = await db.execute(
            select(Employee.id)
            .where(Employee.next_year_backup_balance.is_not(None))
            .limit(1)
        )
        return result.first() is not None

    async def _plan(
        self,
        db: AsyncSession,
        operation: RolloverOperation,
        year_settings: LeaveYearSettings,
    ) -> RolloverPlan:
        current = year_settings.current_year
        if operation == RolloverOperation.revert_previous:
            if year_settings.previous_year is None:
                raise RolloverNotAvailableException(
                    "There is no previous leave year to revert to.",
                )
            return RolloverPlan(operation, current, year_settings.previous_year, None)

        if operation == RolloverOperation.revert_next:
            if not await self._has_forward_backup(db):
                raise RolloverNotAvailableException(
                    "No employee holds a forward backup; advance the year instead.",
                )
        return RolloverPlan(operation, current, current + 1, current)

    # ─────────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────────

    async def _start(
        self,
        operation: RolloverOperation,
        actor_id: Optional[uuid.UUID],
    ) -> RolloverRunOut:
        if self.strategy == RolloverStrategy.bulk:
            return await self._run_bulk(operation, actor_id)

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    year_settings = await load_year_settings(
                        db, self.settings_id, create=True, lock=True,
                    )
                    await self._ensure_not_halted(db)
                    plan = await self._plan(db, operation, year_settings)
                    run = self._new_run(plan, actor_id, RolloverStatus.running)
                    db.add(run)
                run_id = run.id
        except SQLAlchemyError as exc:
            logger.exception("Could not start %s rollover", operation.value)
            raise StorageUnavailableException() from exc

        logger.info(
            "Rollover run %s started: %s %s -> %s in batches of %d",
            run_id, operation.value, plan.from_year, plan.to_year, self.batch_size,
        )
        return await self._drive(run_id, plan, actor_id)

    def _new_run(
        self,
        plan: RolloverPlan,
        actor_id: Optional[uuid.UUID],
        status: RolloverStatus,
    ) -> RolloverRun:
        return RolloverRun(
            id=uuid.uuid4(),
            settings_id=self.settings_id,
            operation=plan.operation,
            strategy=self.strategy,
            status=status,
            from_year=plan.from_year,
            to_year=plan.to_year,
            target_previous_year=plan.target_previous_year,
            updated_employee_ids=[],
            started_by=actor_id,
            started_at=_utcnow(),
        )

    def _apply_settings(
        self,
        year_settings: LeaveYearSettings,
        plan: RolloverPlan,
        actor_id: Optional[uuid.UUID],
    ) -> None:
        year_settings.current_year = plan.to_year
        year_settings.previous_year = plan.target_previous_year
        year_settings.updated_at = _utcnow()
        year_settings.updated_by = actor_id

    async def _run_bulk(
        self,
        operation: RolloverOperation,
        actor_id: Optional[uuid.UUID],
    ) -> RolloverRunOut:
        plan: Optional[RolloverPlan] = None
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    year_settings = await load_year_settings(
                        db, self.settings_id, create=True, lock=True,
                    )
                    await self._ensure_not_halted(db)
                    plan = await self._plan(db, operation, year_settings)

                    moved = (
                        await db.execute(
                            select(Employee.id).where(Employee.leave_year == plan.from_year)
                        )
                    ).scalars().all()
                    await db.execute(
                        update(Employee)
                        .where(Employee.leave_year == plan.from_year)
                        .values(**_row_values(operation, self.grant, plan.to_year))
                        .execution_options(synchronize_session=False)
                    )
                    self._apply_settings(year_settings, plan, actor_id)

                    run = self._new_run(plan, actor_id, RolloverStatus.completed)
                    run.updated_employee_ids = [str(i) for i in moved]
                    run.finished_at = _utcnow()
                    db.add(run)
                out = RolloverRunOut.model_validate(run)
        except SQLAlchemyError as exc:
            logger.exception("Bulk %s rollover rolled back", operation.value)
            if plan is not None:
                await self._record_aborted(plan, actor_id, exc)
            raise StorageUnavailableException() from exc

        logger.info(
            "Rollover %s completed: %s -> %s, %d employee(s)",
            operation.value, plan.from_year, plan.to_year, len(out.updated_employee_ids),
        )
        await notifier.publish(
            CHANNEL_ROLLOVER, operation.value,
            {"run_id": str(out.id), "current_year": plan.to_year},
        )
        return out

    async def _record_aborted(
        self,
        plan: RolloverPlan,
        actor_id: Optional[uuid.UUID],
        exc: Exception,
    ) -> None:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    run = self._new_run(plan, actor_id, RolloverStatus.aborted)
                    run.error = str(exc)
                    run.finished_at = _utcnow()
                    db.add(run)
        except SQLAlchemyError:
            logger.exception("Could not record aborted %s rollover", plan.operation.value)

    async def _apply_batch(
        self,
        run_id: uuid.UUID,
        plan: RolloverPlan,
        cursor: Optional[uuid.UUID],
    ) -> list[uuid.UUID]:
        """Move the next batch of employees and record it on the run; one commit."""
        async with self._session_factory() as db:
            async with db.begin():
                query = (
                    select(Employee.id)
                    .where(Employee.leave_year == plan.from_year)
                    .order_by(Employee.id)
                    .limit(self.batch_size)
                )
                if cursor is not None:
                    query = query.where(Employee.id > cursor)
                ids = list((await db.execute(query)).scalars().all())
                if not ids:
                    return []

                await db.execute(
                    update(Employee)
                    .where(Employee.id.in_(ids), Employee.leave_year == plan.from_year)
                    .values(**_row_values(plan.operation, self.grant, plan.to_year))
                    .execution_options(synchronize_session=False)
                )
                run = await self._get_run(db, run_id)
                run.updated_employee_ids = [
                    *run.updated_employee_ids, *(str(i) for i in ids),
                ]
                run.cursor = ids[-1]

        logger.info("Rollover run %s: moved %d employee(s)", run_id, len(ids))
        return ids

    async def _complete(
        self,
        run_id: uuid.UUID,
        plan: RolloverPlan,
        actor_id: Optional[uuid.UUID],
    ) -> RolloverRunOut:
        async with self._session_factory() as db:
            async with db.begin():
                year_settings = await load_year_settings(db, self.settings_id, lock=True)
                self._apply_settings(year_settings, plan, actor_id)
                run = await self._get_run(db, run_id)
                run.status = RolloverStatus.completed
                run.finished_at = _utcnow()
            return RolloverRunOut.model_validate(run)

    async def _drive(
        self,
        run_id: uuid.UUID,
        plan: RolloverPlan,
        actor_id: Optional[uuid.UUID],
        *,
        cursor: Optional[uuid.UUID] = None,
        updated: Sequence[uuid.UUID] = (),
    ) -> RolloverRunOut:
        moved = list(updated)
        try:
            while True:
                batch = await self._apply_batch(run_id, plan, cursor)
                if not batch:
                    break
                moved.extend(batch)
                cursor = batch[-1]
            out = await self._complete(run_id, plan, actor_id)
        except SQLAlchemyError as exc:
            raise await self._fail(run_id, moved, exc) from exc

        logger.info(
            "Rollover run %s completed: %s %s -> %s, %d employee(s)",
            run_id, plan.operation.value, plan.from_year, plan.to_year, len(moved),
        )
        await notifier.publish(
            CHANNEL_ROLLOVER, plan.operation.value,
            {"run_id": str(run_id), "current_year": plan.to_year},
        )
        return out

    async def _fail(
        self,
        run_id: uuid.UUID,
        moved: Sequence[uuid.UUID],
        exc: SQLAlchemyError,
    ) -> Exception:
        """Record the failure on the run and return the error to raise."""
        status = RolloverStatus.failed if moved else RolloverStatus.aborted
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    run = await self._get_run(db, run_id)
                    run.status = status
                    run.error = str(exc)
                    run.finished_at = _utcnow()
        except SQLAlchemyError:
            logger.exception("Could not mark rollover run %s as %s", run_id, status.value)

        if not moved:
            logger.error("Rollover run %s aborted before any row was written: %s", run_id, exc)
            return StorageUnavailableException()

        logger.error(
            "Rollover run %s halted after %d employee(s): %s", run_id, len(moved), exc,
        )
        await notifier.publish(
            CHANNEL_ROLLOVER, "failed",
            {"run_id": str(run_id), "updated_employee_ids": [str(i) for i in moved]},
        )
        return PartialRolloverFailure(run_id, moved)
