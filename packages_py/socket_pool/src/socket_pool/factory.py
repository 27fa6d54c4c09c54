"""
Factory functions wiring the WebSocket transport to a pool manager
"""

from typing import Dict, Optional

from .config import get_socket_pool_settings, merge_config
from .manager import SocketPoolManager
from .transports.websocket import WebSocketConnectionFactory
from .types import SocketPoolConfig


def build_payment_headers(
    token: Optional[str] = None, user_id: Optional[str] = None
) -> Dict[str, str]:
    """Build handshake headers for a payment connection"""
    headers = {"X-Connection-Type": "payment"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if user_id:
        headers["X-User-Id"] = user_id
    return headers


def create_payment_socket_pool(
    url: str,
    *,
    token: Optional[str] = None,
    user_id: Optional[str] = None,
    config: Optional[SocketPoolConfig] = None,
    join_event: Optional[str] = "join_flow",
) -> SocketPoolManager:
    """
    Create a pool manager for payment-session WebSocket connections.

    Transport reconnect attempts are counted in the manager's
    ``reconnections`` metric. The manager is returned unstarted.

    Example:
        manager = create_payment_socket_pool(
            "wss://api.example.com/ws/payments/{flow_id}",
            token=token,
            user_id=user_id,
        )
        manager.start()
    """
    pool_config = merge_config(config)
    socket_factory = WebSocketConnectionFactory(
        url,
        headers=build_payment_headers(token, user_id),
        connect_timeout_seconds=pool_config.connection_timeout_seconds,
        reconnection=pool_config.reconnection,
        join_event=join_event,
    )
    # The transport times out each attempt; the manager bounds the whole call
    manager = SocketPoolManager(
        socket_factory,
        pool_config,
        creation_timeout_seconds=socket_factory.total_timeout_seconds or 0,
    )
    socket_factory.on_reconnect = manager.record_reconnection
    return manager


def create_socket_pool_from_settings() -> SocketPoolManager:
    """Create a payment pool manager from SOCKET_POOL_* environment variables"""
    settings = get_socket_pool_settings()
    if not settings.url:
        raise ValueError("SOCKET_POOL_URL is not set")
    return create_payment_socket_pool(
        settings.url,
        token=settings.token,
        user_id=settings.user_id,
        config=settings.to_config(),
    )
