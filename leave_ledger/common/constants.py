"""Enums and constants for the leave ledger — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee ────────────────────────────────────────────────────────

class Rank(str, enum.Enum):
    """Position in the office hierarchy; declaration order is display order."""

    kakanim = "KAKANIM"
    kasubbag = "KASUBBAG"
    kasi = "KASI"
    ku = "KU"
    kasubsi = "KASUBSI"
    jft = "JFT"
    jfu = "JFU"
    p3k = "P3K"
    cpns = "CPNS"


RANK_ORDER: dict[Rank, int] = {rank: index for index, rank in enumerate(Rank)}


# ── Ledger ──────────────────────────────────────────────────────────

class TransactionKind(str, enum.Enum):
    accrual = "accrual"
    consumption = "consumption"


# ── Year rollover ───────────────────────────────────────────────────

class RolloverOperation(str, enum.Enum):
    advance = "advance"
    revert_previous = "revert_previous"
    revert_next = "revert_next"


class RolloverStrategy(str, enum.Enum):
    bulk = "bulk"
    batched = "batched"


class RolloverStatus(str, enum.Enum):
    running = "running"
    completed = "completed"
    failed = "failed"  # some rows moved; blocks further rollover
    aborted = "aborted"  # nothing was written
    resolved = "resolved"


# ── Auth ────────────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    viewer = "viewer"


# ── Change notification channels ────────────────────────────────────

CHANNEL_HISTORY = "history"
CHANNEL_EMPLOYEES = "employees"
CHANNEL_ROLLOVER = "rollover"

# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
MAX_REASON_LENGTH = 500
