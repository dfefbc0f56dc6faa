"""Service orchestration: configuration, dependency ordering, a harness CLI and a TLS WebSocket daemon client and server."""

__version__ = "0.1.0"