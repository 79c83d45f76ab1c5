"""Rollover router — leave-year settings, advance/revert, run audit and repair.

The engine manages its own transactions, so these endpoints take a session
factory rather than the request-scoped session. Mutations are admin-only
and rate limited.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_ledger.auth.dependencies import get_current_user, require_admin
from leave_ledger.auth.schemas import AdminPrincipal
from leave_ledger.common.rate_limit import ROLLOVER_RATE_LIMIT, limiter
from leave_ledger.database import get_session_factory
from leave_ledger.rollover.engine import YearRolloverEngine
from leave_ledger.rollover.schemas import (
    ResolveRunRequest,
    RolloverRunOut,
    RolloverSettingsOut,
)

router = APIRouter(prefix="", tags=["rollover"])


def get_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> YearRolloverEngine:
    return YearRolloverEngine.from_settings(session_factory)


# ── GET /settings ───────────────────────────────────────────────────

@router.get("/settings", response_model=RolloverSettingsOut)
async def rollover_settings(
    _: AdminPrincipal = Depends(get_current_user),
    engine: YearRolloverEngine = Depends(get_engine),
):
    """Active leave year and which transitions are available."""
    return await engine.get_settings()


# ── POST /advance ───────────────────────────────────────────────────

@router.post("/advance", response_model=RolloverRunOut)
@limiter.limit(ROLLOVER_RATE_LIMIT)
async def advance(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    engine: YearRolloverEngine = Depends(get_engine),
):
    return await engine.advance(admin.id)


# ── POST /revert-previous ───────────────────────────────────────────

@router.post("/revert-previous", response_model=RolloverRunOut)
@limiter.limit(ROLLOVER_RATE_LIMIT)
async def revert_previous(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    engine: YearRolloverEngine = Depends(get_engine),
):
    return await engine.revert_to_previous(admin.id)


# ── POST /revert-next ───────────────────────────────────────────────

@router.post("/revert-next", response_model=RolloverRunOut)
@limiter.limit(ROLLOVER_RATE_LIMIT)
async def revert_next(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    engine: YearRolloverEngine = Depends(get_engine),
):
    return await engine.revert_to_next(admin.id)


# ── GET /runs ───────────────────────────────────────────────────────

@router.get("/runs", response_model=list[RolloverRunOut])
async def list_runs(
    limit: int = Query(20, ge=1, le=100),
    _: AdminPrincipal = Depends(get_current_user),
    engine: YearRolloverEngine = Depends(get_engine),
):
    """Most recent runs first."""
    return await engine.list_runs(limit)


# ── POST /runs/{id}/resume ──────────────────────────────────────────

@router.post("/runs/{run_id}/resume", response_model=RolloverRunOut)
@limiter.limit(ROLLOVER_RATE_LIMIT)
async def resume_run(
    request: Request,
    run_id: uuid.UUID,
    admin: AdminPrincipal = Depends(require_admin),
    engine: YearRolloverEngine = Depends(get_engine),
):
    return await engine.resume(run_id, admin.id)


# ── POST /runs/{id}/resolve ─────────────────────────────────────────

@router.post("/runs/{run_id}/resolve", response_model=RolloverRunOut)
@limiter.limit(ROLLOVER_RATE_LIMIT)
async def resolve_run(
    request: Request,
    run_id: uuid.UUID,
    body: Optional[ResolveRunRequest] = None,
    admin: AdminPrincipal = Depends(require_admin),
    engine: YearRolloverEngine = Depends(get_engine),
):
    """Close a halted run after the data was repaired by hand."""
    note = body.note if body is not None else None
    return await engine.resolve(run_id, admin.id, note)
