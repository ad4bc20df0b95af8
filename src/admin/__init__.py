"""Super-admin operations over users, keys and settings."""
