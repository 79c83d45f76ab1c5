"""Employees module — Employee model, schemas and services."""

from leave_ledger.employees.models import Employee

__all__ = ["Employee"]
