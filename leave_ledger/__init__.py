"""Leave Ledger — annual-leave balances, history and leave-year rollover."""

__version__ = "1.0.0"
