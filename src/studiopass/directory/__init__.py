"""Studio directory queries."""
