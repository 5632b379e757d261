"""Shared infrastructure: configuration-aware logging, database, errors, time."""
