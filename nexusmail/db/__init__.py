"""SQLite persistence and folder synchronization."""
