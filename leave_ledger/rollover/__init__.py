"""Rollover module — leave-year settings and the advance / revert engine."""
