"""Call lifecycle, querying, export and expiration scheduling."""
