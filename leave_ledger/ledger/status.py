"""On-leave resolver and its short-lived cache.

An employee is on leave on a day when an active (not cancelled on that day)
consumption in their history covers it. Nothing is stored: the answer is
always derived from the log.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import (
    CHANNEL_EMPLOYEES,
    CHANNEL_HISTORY,
    CHANNEL_ROLLOVER,
)
from leave_ledger.common.events import Event
from leave_ledger.config import settings
from leave_ledger.ledger.history import HistoryStore

logger = logging.getLogger(__name__)


def today() -> date:
    """The current date in the office timezone."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).date()


async def is_on_leave(
    db: AsyncSession,
    employee_id: uuid.UUID,
    as_of: Optional[date] = None,
) -> bool:
    entry = await HistoryStore.query_containing(db, employee_id, as_of or today())
    return entry is not None


async def on_leave_employee_ids(
    db: AsyncSession,
    as_of: Optional[date] = None,
) -> set[uuid.UUID]:
    return await HistoryStore.employees_on_leave(db, as_of or today())


class OnLeaveCache:
    """Per-date memo of :func:`on_leave_employee_ids`.

    Entries expire after *ttl_seconds* so a new day is picked up without a
    restart, and are dropped as soon as a history, employee or rollover
    change is published.
    """

    _WATCHED_CHANNELS = frozenset({CHANNEL_HISTORY, CHANNEL_EMPLOYEES, CHANNEL_ROLLOVER})

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[date, tuple[float, frozenset[uuid.UUID]]] = {}

    async def get(
        self,
        db: AsyncSession,
        as_of: Optional[date] = None,
    ) -> frozenset[uuid.UUID]:
        as_of = as_of or today()
        now = self._clock()
        self._evict_expired(now)
        cached = self._entries.get(as_of)
        if cached is not None:
            return cached[1]

        ids = frozenset(await on_leave_employee_ids(db, as_of))
        self._entries[as_of] = (now, ids)
        return ids

    def _evict_expired(self, now: float) -> None:
        expired = [
            day for day, (stamp, _) in self._entries.items()
            if now - stamp >= self.ttl_seconds
        ]
        for day in expired:
            del self._entries[day]

    def invalidate(self) -> None:
        self._entries.clear()

    def handle_event(self, event: Event) -> None:
        """Notifier listener: drop everything on any relevant change."""
        if event.get("channel") in self._WATCHED_CHANNELS:
            logger.debug("On-leave cache invalidated by %s/%s", event["channel"], event.get("action"))
            self.invalidate()


on_leave_cache = OnLeaveCache(ttl_seconds=settings.ON_LEAVE_REFRESH_SECONDS)
