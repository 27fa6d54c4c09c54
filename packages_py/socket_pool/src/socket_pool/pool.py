"""
Per-key pool record
"""

import time
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from .types import ConnectionState, PooledSocket, PoolMetrics, PoolSnapshot, Waiter


class SocketPool:
    """
    Connections and waiters for a single pool key.

    Holds bookkeeping only; the manager decides when connections are created,
    handed out, or closed.
    """

    def __init__(self, key: str, max_size: int) -> None:
        self.key = key
        self.max_size = max_size
        self.active: Set[PooledSocket] = set()
        # Insertion order is release order
        self.idle: Dict[str, PooledSocket] = {}
        self.waiting: Deque[Waiter] = deque()
        # Slots reserved for connections that are still being created
        self.pending_creations = 0
        self.metrics = PoolMetrics(created_at=time.time())

    @property
    def size(self) -> int:
        return len(self.active) + len(self.idle) + self.pending_creations

    def has_capacity(self) -> bool:
        return self.size < self.max_size

    def take_idle(self) -> Optional[PooledSocket]:
        """Remove and return the most recently released idle connection"""
        while self.idle:
            _, connection = self.idle.popitem()
            if not connection.is_closed:
                return connection
        return None

    def checkout(self, connection: PooledSocket) -> None:
        """Mark a connection as active"""
        self.idle.pop(connection.id, None)
        connection.state = ConnectionState.ACTIVE
        connection.use_count += 1
        self.active.add(connection)

    def checkin(self, connection: PooledSocket) -> None:
        """Move an active connection to idle"""
        self.active.discard(connection)
        connection.state = ConnectionState.IDLE
        connection.last_used_at = time.time()
        self.idle[connection.id] = connection

    def remove(self, connection: PooledSocket) -> bool:
        """Drop a connection from the pool. Returns whether it was held."""
        if connection in self.active:
            self.active.discard(connection)
            return True
        return self.idle.pop(connection.id, None) is not None

    def stale_idle(self, now: float, idle_timeout_seconds: float) -> List[PooledSocket]:
        """Get idle connections past the idle timeout or whose socket is gone"""
        return [
            conn
            for conn in self.idle.values()
            if now - conn.last_used_at > idle_timeout_seconds or not conn.is_alive
        ]

    def next_waiter(self) -> Optional[Waiter]:
        """Dequeue the oldest waiter that is still waiting"""
        while self.waiting:
            waiter = self.waiting.popleft()
            if not waiter.future.done():
                return waiter
        return None

    def discard_waiter(self, waiter: Waiter) -> bool:
        """Remove a specific waiter from the queue"""
        try:
            self.waiting.remove(waiter)
        except ValueError:
            return False
        return True

    def snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(
            key=self.key,
            active=len(self.active),
            idle=len(self.idle),
            waiting=len(self.waiting),
            metrics=PoolMetrics(
                created_at=self.metrics.created_at,
                total_connections=self.metrics.total_connections,
                failures=self.metrics.failures,
            ),
        )
