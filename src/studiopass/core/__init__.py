"""Shared primitives: geometry, time, cache, errors."""
