"""Core records and time utilities."""
