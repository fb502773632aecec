"""Kernel utilities shared across the sync engine.

Rules:
- Kernel code must not import from client, storage or sync layers.
- Keep it small and stable; no business logic here.
"""
