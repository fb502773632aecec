"""Interval scheduling of resource syncs."""
