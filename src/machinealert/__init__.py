"""Machine Alert: call lifecycle and expiration service."""

__version__ = "0.1.0"
