"""Persistence backends for users, usage, turns and statistics."""
