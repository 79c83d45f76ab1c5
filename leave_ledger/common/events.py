"""Change notifications: WebSocket broadcast plus in-process listeners.

Every ledger or rollover mutation publishes one event::

    {"channel": "history", "action": "take", "data": {"employee_id": "..."}}

Events raised inside a request transaction are queued on the session and
only sent after it commits (see :func:`leave_ledger.database.commit_and_publish`);
a rollback drops them.

WebSocket subscribers refetch balances and on-leave status when they see
it; in-process listeners (the on-leave cache) invalidate themselves.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

from fastapi import WebSocket
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

Event = Dict[str, Any]
Listener = Callable[[Event], Union[None, Awaitable[None]]]

_PENDING_KEY = "pending_change_events"


class ChangeNotifier:
    """Tracks open WebSocket connections and in-process event listeners."""

    def __init__(self) -> None:
        self._connections: List[WebSocket] = []
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()

    # ── in-process listeners ────────────────────────────────────────

    def subscribe(self, listener: Listener) -> None:
        """Register *listener*; registering the same callable twice is a no-op."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── WebSocket subscribers ───────────────────────────────────────

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a websocket connection."""

        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a websocket connection if it still exists."""

        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)

    # ── publishing ──────────────────────────────────────────────────

    async def publish(self, channel: str, action: str, data: Dict[str, Any]) -> None:
        """Notify listeners, then broadcast the event to every websocket."""
        await self._dispatch({"channel": channel, "action": action, "data": data})

    def publish_after_commit(
        self,
        session: AsyncSession,
        channel: str,
        action: str,
        data: Dict[str, Any],
    ) -> None:
        """Queue an event on *session*; :meth:`publish_pending` sends it
        once the transaction has committed."""
        event: Event = {"channel": channel, "action": action, "data": data}
        session.info.setdefault(_PENDING_KEY, []).append(event)

    async def publish_pending(self, session: AsyncSession) -> None:
        for event in session.info.pop(_PENDING_KEY, []):
            await self._dispatch(event)

    def discard_pending(self, session: AsyncSession) -> None:
        dropped = session.info.pop(_PENDING_KEY, [])
        if dropped:
            logger.debug("Discarding %d unpublished event(s) after rollback", len(dropped))

    async def _dispatch(self, event: Event) -> None:
        for listener in list(self._listeners):
            result = listener(event)
            if inspect.isawaitable(result):
                await result

        async with self._lock:
            targets = list(self._connections)

        stale_connections: list[WebSocket] = []
        for connection in targets:
            try:
                await connection.send_json(event)
            except Exception:  # pragma: no cover - socket already gone
                stale_connections.append(connection)

        for websocket in stale_connections:
            logger.debug("Dropping stale websocket %r", websocket)
            await self.disconnect(websocket)


notifier = ChangeNotifier()
