"""Common module — shared utilities for the leave ledger."""

from leave_ledger.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    RANK_ORDER,
    Rank,
    RolloverOperation,
    RolloverStatus,
    RolloverStrategy,
    TransactionKind,
    UserRole,
)
from leave_ledger.common.exceptions import (
    AppException,
    ConcurrentUpdateException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidDateRangeException,
    NoMatchingLeavePeriodException,
    NotFoundException,
    PartialRolloverFailure,
    RolloverNotAvailableException,
    StorageUnavailableException,
    ValidationException,
    register_exception_handlers,
)
from leave_ledger.common.filters import apply_search
from leave_ledger.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Constants / Enums
    "Rank",
    "RANK_ORDER",
    "RolloverOperation",
    "RolloverStatus",
    "RolloverStrategy",
    "TransactionKind",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConcurrentUpdateException",
    "ConflictError",
    "ForbiddenException",
    "InsufficientBalanceException",
    "InvalidDateRangeException",
    "NoMatchingLeavePeriodException",
    "NotFoundException",
    "PartialRolloverFailure",
    "RolloverNotAvailableException",
    "StorageUnavailableException",
    "ValidationException",
    "register_exception_handlers",
    # Filters
    "apply_search",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
