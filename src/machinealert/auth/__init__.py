"""Identity claims and role-based access control."""
