"""Subscription lifecycle and status projection."""
