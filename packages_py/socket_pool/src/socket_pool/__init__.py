"""
socket_pool - Bounded per-key pools of real-time connections

Logging is enabled by default. Disable with DEBUG=false or DEBUG=0.
"""

import logging
import os


def _is_debug_enabled() -> bool:
    """
    Check if debug logging is enabled.
    Logging is ENABLED by default. Disable with DEBUG=false or DEBUG=0.
    """
    debug = os.environ.get("DEBUG", "").lower()
    if debug in ("false", "0"):
        return False
    return True


def _configure_logging() -> None:
    """Configure package logging based on DEBUG environment variable."""
    package_logger = logging.getLogger("socket_pool")

    if _is_debug_enabled():
        package_logger.setLevel(logging.DEBUG)

        # Add handler if none exists (avoid duplicate handlers)
        if not package_logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
            package_logger.addHandler(handler)
    else:
        package_logger.setLevel(logging.WARNING)


# Configure logging on import
_configure_logging()

from .types import (  # noqa: E402
    ConnectionState,
    SocketHandle,
    SocketFactory,
    PooledSocket,
    ReconnectionConfig,
    SocketPoolConfig,
    PoolMetrics,
    GlobalMetrics,
    PoolSnapshot,
    PoolManagerMetrics,
    Waiter,
    SocketPoolEventType,
    SocketPoolEvent,
    SocketPoolEventListener,
)
from .errors import (  # noqa: E402
    SocketPoolError,
    PoolClosedError,
    PoolQueueFullError,
    AcquireTimeoutError,
)
from .config import (  # noqa: E402
    DEFAULT_SOCKET_POOL_CONFIG,
    SocketPoolSettings,
    merge_config,
    validate_config,
    get_payment_pool_key,
    parse_pool_key,
    generate_connection_id,
    calculate_reconnect_delay,
    get_socket_pool_settings,
)
from .pool import SocketPool  # noqa: E402
from .manager import SocketPoolManager  # noqa: E402
from .transports.websocket import WebSocketConnectionFactory  # noqa: E402
from .factory import (  # noqa: E402
    build_payment_headers,
    create_payment_socket_pool,
    create_socket_pool_from_settings,
)

__all__ = [
    # Types
    "ConnectionState",
    "SocketHandle",
    "SocketFactory",
    "PooledSocket",
    "ReconnectionConfig",
    "SocketPoolConfig",
    "PoolMetrics",
    "GlobalMetrics",
    "PoolSnapshot",
    "PoolManagerMetrics",
    "Waiter",
    "SocketPoolEventType",
    "SocketPoolEvent",
    "SocketPoolEventListener",
    # Errors
    "SocketPoolError",
    "PoolClosedError",
    "PoolQueueFullError",
    "AcquireTimeoutError",
    # Config
    "DEFAULT_SOCKET_POOL_CONFIG",
    "SocketPoolSettings",
    "merge_config",
    "validate_config",
    "get_payment_pool_key",
    "parse_pool_key",
    "generate_connection_id",
    "calculate_reconnect_delay",
    "get_socket_pool_settings",
    # Pool
    "SocketPool",
    "SocketPoolManager",
    # Transports
    "WebSocketConnectionFactory",
    "build_payment_headers",
    "create_payment_socket_pool",
    "create_socket_pool_from_settings",
]
