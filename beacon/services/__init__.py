"""Database-backed services: schedules, overrides, escalation runs, delivery ledger."""
