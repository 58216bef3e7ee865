"""IPMap API: cached, rate-limited access to the published AWS IP ranges."""

__version__ = "1.0.0"
