"""Read-only machine, factory and category lookups."""
