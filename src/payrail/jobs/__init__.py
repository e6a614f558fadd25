"""Periodic settlement jobs (transaction polling, balance reconciliation)."""
