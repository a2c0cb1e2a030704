"""Enrollment management.

Idempotent user-course enrollment with best-effort mirror and counter
upkeep, plus reconciliation.
"""
