"""Message operations."""
