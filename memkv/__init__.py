"""In-memory key-value database engine with a Redis-compatible command interface."""

__version__ = "0.1.0"
__all__ = ["replies", "router", "db", "hashes", "lists", "keys", "server"]