"""Case-insensitive search utilities for list endpoints."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from sqlalchemy import Select, String, cast, or_
from sqlalchemy.orm import InstrumentedAttribute


# ── ILIKE search ────────────────────────────────────────────────────

def apply_search(
    query: Select,
    model: Any,
    search: Optional[str],
    columns: Sequence[str],
) -> Select:
    """
    Keep rows where any of *columns* contains *search* (case-insensitive).

    Unknown column names are skipped; blank searches leave *query* unchanged.
    """
    if not search or not search.strip():
        return query

    search = search.strip()
    like_conds: list = []
    for name in columns:
        col = _get_column(model, name)
        if col is None:
            continue
        like_conds.append(cast(col, String).ilike(f"%{search}%"))

    if not like_conds:
        return query
    return query.where(or_(*like_conds))


# ── Internal helper ─────────────────────────────────────────────────

def _get_column(model: Any, name: str) -> Optional[InstrumentedAttribute]:
    """Safely retrieve a mapped column attribute by name."""
    return getattr(model, name, None)
