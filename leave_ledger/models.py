"""Import every ORM module so SQLAlchemy can resolve cross-module relationships."""

from leave_ledger.employees.models import Employee
from leave_ledger.ledger.models import LeaveTransaction
from leave_ledger.rollover.models import LeaveYearSettings, RolloverRun

__all__ = [
    "Employee",
    "LeaveTransaction",
    "LeaveYearSettings",
    "RolloverRun",
]
