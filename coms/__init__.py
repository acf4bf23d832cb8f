"""WebSocket operation server and monitoring agent exchanging JSON messages."""

__version__ = "0.1.0"
__all__ = ["client", "logger", "protocol", "server"]