"""
Socket transports for socket-pool
"""

from .websocket import WebSocketConnectionFactory

__all__ = ["WebSocketConnectionFactory"]
