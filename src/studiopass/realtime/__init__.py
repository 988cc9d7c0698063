"""Push-based cache synchronization."""
