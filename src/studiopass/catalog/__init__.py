"""Studio catalog loading."""
