"""Ledger module — two-bucket balances, append-only history, on-leave status."""
