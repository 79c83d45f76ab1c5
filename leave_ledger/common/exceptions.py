"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

BASE_ERROR_URI = "https://cuti.local/errors"

logger = logging.getLogger(__name__)


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.headers = headers
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Ledger errors (raised before any write) ────────────────────────

class InsufficientBalanceException(AppException):
    """422 — consumption exceeds prior + current year balance."""

    def __init__(self, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Leave Balance",
            detail=(
                f"Insufficient leave balance. Available: {available} days, "
                f"requested: {requested} days."
            ),
            errors={"days": [f"At most {available} days can be taken."]},
        )


class InvalidDateRangeException(AppException):
    """422 — end date before start date."""

    def __init__(self, start_date: Any, end_date: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-date-range",
            title="Invalid Date Range",
            detail=f"End date {end_date} is before start date {start_date}.",
            errors={"end_date": ["end_date must be on or after start_date."]},
        )


class NoMatchingLeavePeriodException(AppException):
    """422 — cancellation range not covered by a recorded leave."""

    def __init__(self, start_date: Any, end_date: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="no-matching-leave-period",
            title="No Matching Leave Period",
            detail=(
                f"No recorded leave covers {start_date} to {end_date}; "
                "nothing to cancel."
            ),
        )


# ── Storage / concurrency errors ────────────────────────────────────

class StorageUnavailableException(AppException):
    """503 — transient persistence failure; the client may retry."""

    def __init__(self, retry_after: int = 5) -> None:
        super().__init__(
            status_code=503,
            error_type="storage-unavailable",
            title="Storage Unavailable",
            detail="The data store is temporarily unavailable. Please try again.",
            headers={"Retry-After": str(retry_after)},
        )


class ConcurrentUpdateException(AppException):
    """409 — the record changed underneath this write; reload and retry."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrent-update",
            title="Concurrent Update",
            detail=(
                f"{entity_type} '{entity_id}' was modified by another operator. "
                "Reload and try again."
            ),
        )


# ── Year rollover errors ────────────────────────────────────────────

class RolloverNotAvailableException(AppException):
    """409 — the requested rollover transition is not valid right now."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=409,
            error_type="rollover-not-available",
            title="Rollover Not Available",
            detail=detail,
        )


class PartialRolloverFailure(AppException):
    """409 — a batched rollover stopped after writing some employee rows.

    Further rollover operations are refused until the run is resumed or
    marked resolved by an operator.
    """

    def __init__(
        self,
        run_id: uuid.UUID,
        updated_employee_ids: Sequence[Any] = (),
        detail: Optional[str] = None,
    ) -> None:
        self.run_id = run_id
        self.updated_employee_ids = [str(i) for i in updated_employee_ids]
        super().__init__(
            status_code=409,
            error_type="partial-rollover-failure",
            title="Partial Rollover Failure",
            detail=detail or (
                f"Rollover run '{run_id}' failed after updating "
                f"{len(self.updated_employee_ids)} employee(s). Inspect the data, "
                "then resume or resolve the run before any further rollover."
            ),
            errors={
                "run_id": [str(run_id)],
                "updated_employee_ids": self.updated_employee_ids,
            },
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
        headers=exc.headers,
    )


async def _handle_storage_error(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    # Raised outside a service, e.g. by the commit in get_db()
    logger.exception("Storage failure on %s", request.url.path)
    return await _handle_app_exception(request, StorageUnavailableException())


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(OperationalError, _handle_storage_error)
    app.add_exception_handler(InterfaceError, _handle_storage_error)
