"""Typed settings and logging configuration."""
