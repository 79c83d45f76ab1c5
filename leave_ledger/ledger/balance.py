"""Two-bucket balance arithmetic: prior-year days are always used first.

Pure functions over ``Buckets``; the transactional wrapper lives in
``leave_ledger.ledger.service``.
"""

from __future__ import annotations

from dataclasses import dataclass

from leave_ledger.common.exceptions import (
    InsufficientBalanceException,
    ValidationException,
)


@dataclass(frozen=True)
class Buckets:
    """Prior-year and current-year leave balance, in whole days."""

    prior: int
    current: int

    def __post_init__(self) -> None:
        if self.prior < 0 or self.current < 0:
            raise ValueError(f"Leave buckets cannot be negative: {self}")

    @property
    def total(self) -> int:
        return self.prior + self.current

    def delta(self, before: "Buckets") -> tuple[int, int]:
        """Signed (prior, current) movement from *before* to this value."""
        return self.prior - before.prior, self.current - before.current


def _require_positive(days: int) -> None:
    if days <= 0:
        raise ValidationException({"days": ["Day count must be at least 1."]})


def consume(buckets: Buckets, days: int) -> Buckets:
    """Take *days* of leave, debiting the prior-year bucket before the current one."""
    _require_positive(days)
    if buckets.total < days:
        raise InsufficientBalanceException(available=buckets.total, requested=days)

    from_prior = min(buckets.prior, days)
    return Buckets(
        prior=buckets.prior - from_prior,
        current=buckets.current - (days - from_prior),
    )


def accrue(buckets: Buckets, days: int) -> Buckets:
    """Manual top-up: credit the current-year bucket."""
    _require_positive(days)
    return Buckets(prior=buckets.prior, current=buckets.current + days)


def restore(buckets: Buckets, days: int, grant: int) -> Buckets:
    """Give back cancelled leave.

    While the prior-year bucket is below *grant* it is refilled first, up to
    the shortfall; anything left over goes to the current-year bucket.
    """
    _require_positive(days)
    to_prior = min(days, grant - buckets.prior) if buckets.prior < grant else 0
    return Buckets(
        prior=buckets.prior + to_prior,
        current=buckets.current + (days - to_prior),
    )
