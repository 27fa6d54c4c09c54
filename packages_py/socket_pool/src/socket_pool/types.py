"""
Type definitions for socket-pool
"""

import asyncio
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from websockets.protocol import State


class ConnectionState(str, Enum):
    """Pooled connection lifecycle state"""

    CREATED = "created"
    ACTIVE = "active"
    IDLE = "idle"
    CLOSED = "closed"


class SocketHandle(Protocol):
    """Underlying real-time socket owned by a pooled connection"""

    async def close(self) -> None:
        """Close the socket"""
        ...


# Creates a connected socket for a pool key
SocketFactory = Callable[[str], Awaitable[SocketHandle]]


@dataclass(eq=False)
class PooledSocket:
    """A pooled real-time connection"""

    id: str
    pool_key: str
    socket: Any
    created_at: float  # Unix timestamp
    last_used_at: float  # Unix timestamp
    state: ConnectionState = ConnectionState.CREATED
    use_count: int = 0

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def is_alive(self) -> bool:
        """
        Whether the connection can still carry traffic. Sockets that report a
        protocol ``state`` (websockets connections) must be OPEN; the server
        may have closed them while they sat idle.
        """
        if self.is_closed:
            return False
        socket_state = getattr(self.socket, "state", None)
        return socket_state is None or socket_state is State.OPEN

    async def disconnect(self) -> None:
        """Close the underlying socket. Only the first call reaches the socket."""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        await self.socket.close()


@dataclass
class ReconnectionConfig:
    """Transport reconnection bounds"""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 5.0
    jitter_seconds: float = 1.0


@dataclass
class SocketPoolConfig:
    """Socket pool manager configuration"""

    max_size: int = 5
    min_connections: int = 2
    connection_timeout_seconds: float = 10.0
    idle_timeout_seconds: float = 30.0
    cleanup_interval_seconds: float = 60.0
    metrics_interval_seconds: float = 10.0
    queue_timeout_seconds: float = 30.0
    max_queue_size: int = 1000
    reconnection: ReconnectionConfig = field(default_factory=ReconnectionConfig)


@dataclass
class PoolMetrics:
    """Per-pool counters"""

    created_at: float
    total_connections: int = 0
    failures: int = 0


@dataclass
class GlobalMetrics:
    """Process-wide counters maintained by the manager"""

    total_connections: int = 0
    active_connections: int = 0
    failed_connections: int = 0
    reconnections: int = 0
    last_cleanup: Optional[float] = None


@dataclass
class PoolSnapshot:
    """Point-in-time view of a single pool"""

    key: str
    active: int
    idle: int
    waiting: int
    metrics: PoolMetrics


@dataclass
class PoolManagerMetrics:
    """Point-in-time view of the manager and all of its pools"""

    total_connections: int
    active_connections: int
    failed_connections: int
    reconnections: int
    last_cleanup: Optional[float]
    pools: List[PoolSnapshot]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(eq=False)
class Waiter:
    """Acquisition request queued while a pool is saturated"""

    future: asyncio.Future
    enqueued_at: float
    timeout_handle: Optional[asyncio.TimerHandle] = None


class SocketPoolEventType(str, Enum):
    """Pool event types"""

    CONNECTION_CREATED = "connection:created"
    CONNECTION_ACQUIRED = "connection:acquired"
    CONNECTION_RELEASED = "connection:released"
    CONNECTION_EVICTED = "connection:evicted"
    CONNECTION_DISCARDED = "connection:discarded"
    CONNECTION_ERROR = "connection:error"
    CONNECTION_RECONNECT = "connection:reconnect"
    QUEUE_ADDED = "queue:added"
    QUEUE_TIMEOUT = "queue:timeout"
    QUEUE_OVERFLOW = "queue:overflow"
    POOL_CLEANUP = "pool:cleanup"
    POOL_METRICS = "pool:metrics"


@dataclass
class SocketPoolEvent:
    """Pool event"""

    type: SocketPoolEventType
    timestamp: float
    pool_key: Optional[str] = None
    connection_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


# Type alias for event listeners
SocketPoolEventListener = Callable[[SocketPoolEvent], None]
