"""HTTP and WebSocket API."""

from mediaflow.api import routes, websocket

__all__ = ["routes", "websocket"]
