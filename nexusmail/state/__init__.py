"""Shared types and in-process sync state."""
