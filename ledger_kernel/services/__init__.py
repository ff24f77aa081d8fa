"""Kernel services: flush-only writers.  The caller owns commit/rollback."""
