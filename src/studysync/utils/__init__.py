"""Utility helpers (text cleanup, source lookup)."""
