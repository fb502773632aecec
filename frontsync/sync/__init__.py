"""Sync engine: change detection, upserts, relationship reconciliation, orchestration."""
