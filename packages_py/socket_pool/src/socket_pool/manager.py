"""
Socket pool manager implementation
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from .config import generate_connection_id, merge_config, validate_config
from .errors import AcquireTimeoutError, PoolClosedError, PoolQueueFullError
from .pool import SocketPool
from .types import (
    GlobalMetrics,
    PooledSocket,
    PoolManagerMetrics,
    SocketFactory,
    SocketPoolConfig,
    SocketPoolEvent,
    SocketPoolEventListener,
    SocketPoolEventType,
    Waiter,
)

logger = logging.getLogger(__name__)

LOG_PREFIX = "[SocketPoolManager]"


class SocketPoolManager:
    """
    Bounded pools of real-time connections, one pool per key.

    Connections for a key are handed out in this order: an idle connection,
    a newly created one while the pool is below ``max_size``, or the caller
    waits (FIFO) until one is released. Background tasks started by
    ``start()`` log metrics and evict connections idle past
    ``idle_timeout_seconds``.

    Usage:
        manager = SocketPoolManager(socket_factory)
        manager.start()

        async with manager.connection(get_payment_pool_key(payment_id)) as conn:
            await conn.socket.send(payload)

        await manager.close()
    """

    def __init__(
        self,
        socket_factory: SocketFactory,
        config: Optional[SocketPoolConfig] = None,
        creation_timeout_seconds: Optional[float] = None,
    ) -> None:
        """
        Args:
            socket_factory: Coroutine function returning a connected socket
                for a pool key
            config: Pool configuration; defaults apply when omitted
            creation_timeout_seconds: Limit on one socket_factory call.
                Defaults to ``connection_timeout_seconds``; 0 disables it.
                Factories that retry internally need a budget spanning all
                their attempts.
        """
        self._config = merge_config(config)
        errors = validate_config(self._config)
        if creation_timeout_seconds is not None and creation_timeout_seconds < 0:
            errors.append("creation_timeout_seconds must be non-negative")
        if errors:
            raise ValueError(f"Invalid socket pool config: {'; '.join(errors)}")

        self._creation_timeout_seconds = (
            self._config.connection_timeout_seconds
            if creation_timeout_seconds is None
            else creation_timeout_seconds
        )

        self._socket_factory = socket_factory
        self._pools: Dict[str, SocketPool] = {}
        self._metrics = GlobalMetrics()
        self._listeners: Dict[SocketPoolEventType, Set[SocketPoolEventListener]] = {}
        self._metrics_task: Optional[asyncio.Task] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        # Disconnects of dead idle sockets found outside a coroutine
        self._disconnect_tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def config(self) -> SocketPoolConfig:
        return self._config

    @property
    def creation_timeout_seconds(self) -> float:
        return self._creation_timeout_seconds

    @property
    def is_running(self) -> bool:
        """Whether the background tasks are running"""
        return self._metrics_task is not None or self._cleanup_task is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pool_keys(self) -> List[str]:
        return list(self._pools)

    def get_pool(self, key: str) -> Optional[SocketPool]:
        """Get the pool for a key, if one has been created"""
        return self._pools.get(key)

    # Lifecycle

    def start(self) -> None:
        """Start the metrics and idle-cleanup tasks. Requires a running loop."""
        if self._closed:
            raise PoolClosedError("Socket pool manager is closed")
        if self.is_running:
            return

        self._metrics_task = asyncio.create_task(self._metrics_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            f"{LOG_PREFIX} start: metrics every {self._config.metrics_interval_seconds}s, "
            f"cleanup every {self._config.cleanup_interval_seconds}s "
            f"(idle timeout {self._config.idle_timeout_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background tasks. Pools and connections are kept."""
        tasks = [t for t in (self._metrics_task, self._cleanup_task) if t is not None]
        self._metrics_task = None
        self._cleanup_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        if tasks:
            logger.info(f"{LOG_PREFIX} stop: background tasks stopped")

    async def close(self) -> None:
        """Stop background tasks, reject waiters and disconnect every connection"""
        if self._closed:
            return

        self._closed = True
        await self.stop()

        connections: List[PooledSocket] = []
        for pool in self._pools.values():
            while pool.waiting:
                waiter = pool.waiting.popleft()
                if waiter.timeout_handle:
                    waiter.timeout_handle.cancel()
                if not waiter.future.done():
                    waiter.future.set_exception(
                        PoolClosedError("Socket pool manager is closed")
                    )
            connections.extend(pool.active)
            connections.extend(pool.idle.values())
            pool.active.clear()
            pool.idle.clear()

        self._metrics.active_connections = 0

        for connection in connections:
            await self._disconnect(connection)
        if self._disconnect_tasks:
            await asyncio.gather(*list(self._disconnect_tasks))

        logger.info(
            f"{LOG_PREFIX} close: disconnected {len(connections)} connection(s) "
            f"across {len(self._pools)} pool(s)"
        )

    async def __aenter__(self) -> "SocketPoolManager":
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    # Acquire / release

    async def acquire_connection(
        self, key: str, timeout_seconds: Optional[float] = None
    ) -> PooledSocket:
        """
        Acquire a connection for a pool key.

        Args:
            key: Pool key, e.g. ``payment:<id>``
            timeout_seconds: How long to wait in the queue when the pool is
                saturated. Defaults to ``queue_timeout_seconds``; 0 waits
                indefinitely.

        Raises:
            PoolClosedError: The manager is closed
            PoolQueueFullError: The pool is saturated and its queue is full
            AcquireTimeoutError: No connection became available in time
            Exception: Whatever the socket factory raised while creating
        """
        if self._closed:
            raise PoolClosedError("Socket pool manager is closed")

        pool = self._get_or_create_pool(key)
        logger.debug(
            f"{LOG_PREFIX} acquire_connection: key={key} active={len(pool.active)} "
            f"idle={len(pool.idle)} waiting={len(pool.waiting)}"
        )

        existing = self._take_live_idle(pool)
        if existing is not None:
            self._checkout(pool, existing)
            return existing

        if pool.has_capacity():
            return await self._create_connection(pool)

        return await self._wait_for_connection(pool, timeout_seconds)

    def release_connection(self, connection: PooledSocket) -> None:
        """Return an active connection to its pool's idle set"""
        pool = self._pools.get(connection.pool_key)
        if pool is None or connection not in pool.active:
            logger.warning(
                f"{LOG_PREFIX} release_connection: {connection.id} is not active "
                f"in pool {connection.pool_key} (state={connection.state.value}), ignoring"
            )
            return

        pool.checkin(connection)
        self._metrics.active_connections -= 1

        logger.debug(
            f"{LOG_PREFIX} release_connection: key={pool.key} id={connection.id} "
            f"active={len(pool.active)} idle={len(pool.idle)} waiting={len(pool.waiting)}"
        )
        self._emit(SocketPoolEventType.CONNECTION_RELEASED, pool.key, connection.id)

        self._process_waiters(pool)

    async def discard_connection(
        self, connection: PooledSocket, error: Optional[Exception] = None
    ) -> None:
        """Remove a broken connection from its pool and disconnect it"""
        pool = self._pools.get(connection.pool_key)
        held = False
        if pool is not None:
            was_active = connection in pool.active
            held = pool.remove(connection)
            if was_active:
                self._metrics.active_connections -= 1

        logger.warning(
            f"{LOG_PREFIX} discard_connection: key={connection.pool_key} "
            f"id={connection.id} error={error}"
        )
        self._emit(
            SocketPoolEventType.CONNECTION_DISCARDED,
            connection.pool_key,
            connection.id,
            {"error": str(error) if error else None},
        )

        if held and pool is not None:
            self._process_waiters(pool)

        await self._disconnect(connection)

    @asynccontextmanager
    async def connection(
        self, key: str, timeout_seconds: Optional[float] = None
    ) -> AsyncIterator[PooledSocket]:
        """Acquire a connection for the duration of the block"""
        conn = await self.acquire_connection(key, timeout_seconds)
        try:
            yield conn
        finally:
            if not conn.is_closed:
                self.release_connection(conn)

    async def prewarm(self, key: str) -> int:
        """Create idle connections until the pool holds min_connections"""
        if self._closed:
            raise PoolClosedError("Socket pool manager is closed")

        pool = self._get_or_create_pool(key)
        target = min(self._config.min_connections, pool.max_size)
        created = 0
        while pool.size < target:
            connection = await self._create_connection(pool)
            self.release_connection(connection)
            created += 1

        if created:
            logger.info(f"{LOG_PREFIX} prewarm: key={key} created={created}")
        return created

    # Maintenance

    async def cleanup_idle_connections(self) -> int:
        """Evict and disconnect connections idle past the idle timeout or no longer open"""
        now = time.time()
        evicted = 0

        for pool in list(self._pools.values()):
            pool_evicted = 0
            for connection in pool.stale_idle(now, self._config.idle_timeout_seconds):
                # May have been checked out while an earlier disconnect was awaited
                if pool.idle.get(connection.id) is not connection:
                    continue
                del pool.idle[connection.id]
                pool_evicted += 1
                self._emit(
                    SocketPoolEventType.CONNECTION_EVICTED,
                    pool.key,
                    connection.id,
                    {
                        "idle_seconds": now - connection.last_used_at,
                        "reason": "idle_timeout" if connection.is_alive else "socket_closed",
                    },
                )
                await self._disconnect(connection)

            if pool_evicted:
                evicted += pool_evicted
                self._process_waiters(pool)

        self._metrics.last_cleanup = now
        logger.info(
            f"{LOG_PREFIX} cleanup: evicted {evicted} idle connection(s)",
            extra={"evicted": evicted},
        )
        self._emit(SocketPoolEventType.POOL_CLEANUP, data={"evicted": evicted})
        return evicted

    def record_reconnection(self, key: str) -> None:
        """Count a transport-level reconnect attempt"""
        self._metrics.reconnections += 1
        logger.debug(
            f"{LOG_PREFIX} record_reconnection: key={key} "
            f"total={self._metrics.reconnections}"
        )
        self._emit(SocketPoolEventType.CONNECTION_RECONNECT, key)

    # Metrics

    def get_pool_metrics(self) -> PoolManagerMetrics:
        """Get global counters and a snapshot of every pool"""
        return PoolManagerMetrics(
            total_connections=self._metrics.total_connections,
            active_connections=self._metrics.active_connections,
            failed_connections=self._metrics.failed_connections,
            reconnections=self._metrics.reconnections,
            last_cleanup=self._metrics.last_cleanup,
            pools=[pool.snapshot() for pool in self._pools.values()],
        )

    def log_metrics(self) -> PoolManagerMetrics:
        """Emit a metrics snapshot as a structured log record"""
        metrics = self.get_pool_metrics()
        summary = ", ".join(
            f"{p.key}(active={p.active}, idle={p.idle}, waiting={p.waiting})"
            for p in metrics.pools
        ) or "no pools"
        logger.info(
            f"{LOG_PREFIX} metrics: total={metrics.total_connections} "
            f"active={metrics.active_connections} failed={metrics.failed_connections} "
            f"reconnections={metrics.reconnections} pools: {summary}",
            extra={"pool_metrics": metrics.to_dict()},
        )
        self._emit(SocketPoolEventType.POOL_METRICS, data=metrics.to_dict())
        return metrics

    # Events

    def on(
        self, event_type: SocketPoolEventType, listener: SocketPoolEventListener
    ) -> None:
        """Add an event listener"""
        if event_type not in self._listeners:
            self._listeners[event_type] = set()
        self._listeners[event_type].add(listener)

    def off(
        self, event_type: SocketPoolEventType, listener: SocketPoolEventListener
    ) -> None:
        """Remove an event listener"""
        if event_type in self._listeners:
            self._listeners[event_type].discard(listener)

    # Internals

    def _get_or_create_pool(self, key: str) -> SocketPool:
        pool = self._pools.get(key)
        if pool is None:
            pool = SocketPool(key, self._config.max_size)
            self._pools[key] = pool
            logger.debug(f"{LOG_PREFIX} created pool {key} (max_size={pool.max_size})")
        return pool

    def _take_live_idle(self, pool: SocketPool) -> Optional[PooledSocket]:
        """Take the next idle connection, discarding any whose socket is no longer open"""
        while True:
            connection = pool.take_idle()
            if connection is None or connection.is_alive:
                return connection

            logger.warning(
                f"{LOG_PREFIX} idle connection {connection.id} in pool {pool.key} "
                f"is no longer open, discarding"
            )
            self._emit(
                SocketPoolEventType.CONNECTION_DISCARDED,
                pool.key,
                connection.id,
                {"error": "socket is not open"},
            )
            task = asyncio.get_running_loop().create_task(self._disconnect(connection))
            self._disconnect_tasks.add(task)
            task.add_done_callback(self._disconnect_tasks.discard)

    def _checkout(self, pool: SocketPool, connection: PooledSocket) -> None:
        pool.checkout(connection)
        self._metrics.active_connections += 1
        self._emit(SocketPoolEventType.CONNECTION_ACQUIRED, pool.key, connection.id)

    async def _create_connection(
        self, pool: SocketPool, reserved: bool = False
    ) -> PooledSocket:
        """Create a connection in a slot of the pool (reserving one unless already held)"""
        if self._closed:
            if reserved:
                pool.pending_creations -= 1
            raise PoolClosedError("Socket pool manager is closed")

        if not reserved:
            pool.pending_creations += 1

        timeout = self._creation_timeout_seconds or None
        try:
            socket = await asyncio.wait_for(self._socket_factory(pool.key), timeout=timeout)
        except asyncio.CancelledError:
            pool.pending_creations -= 1
            self._process_waiters(pool)
            raise
        except Exception as e:
            pool.pending_creations -= 1
            pool.metrics.failures += 1
            self._metrics.failed_connections += 1
            logger.error(
                f"{LOG_PREFIX} _create_connection: key={pool.key} failed: "
                f"{type(e).__name__}: {e}"
            )
            self._emit(
                SocketPoolEventType.CONNECTION_ERROR,
                pool.key,
                data={"error": str(e), "error_type": type(e).__name__},
            )
            self._process_waiters(pool)
            raise

        pool.pending_creations -= 1
        now = time.time()
        connection = PooledSocket(
            id=generate_connection_id(),
            pool_key=pool.key,
            socket=socket,
            created_at=now,
            last_used_at=now,
        )
        pool.metrics.total_connections += 1
        self._metrics.total_connections += 1

        if self._closed:
            await self._disconnect(connection)
            raise PoolClosedError("Socket pool manager is closed")

        logger.info(
            f"{LOG_PREFIX} _create_connection: key={pool.key} id={connection.id} "
            f"size={pool.size + 1}/{pool.max_size}"
        )
        self._emit(SocketPoolEventType.CONNECTION_CREATED, pool.key, connection.id)
        self._checkout(pool, connection)
        return connection

    async def _wait_for_connection(
        self, pool: SocketPool, timeout_seconds: Optional[float]
    ) -> PooledSocket:
        """Queue the caller until a connection or a free slot is handed over"""
        if len(pool.waiting) >= self._config.max_queue_size:
            self._emit(SocketPoolEventType.QUEUE_OVERFLOW, pool.key)
            logger.warning(
                f"{LOG_PREFIX} acquire_connection: key={pool.key} queue is full "
                f"({len(pool.waiting)}/{self._config.max_queue_size})"
            )
            raise PoolQueueFullError(f"Waiting queue for pool {pool.key} is full")

        loop = asyncio.get_running_loop()
        waiter = Waiter(future=loop.create_future(), enqueued_at=time.time())

        timeout = (
            self._config.queue_timeout_seconds
            if timeout_seconds is None
            else timeout_seconds
        )
        if timeout > 0:
            waiter.timeout_handle = loop.call_later(
                timeout, self._expire_waiter, pool, waiter, timeout
            )

        pool.waiting.append(waiter)
        self._emit(
            SocketPoolEventType.QUEUE_ADDED, pool.key, data={"position": len(pool.waiting)}
        )
        logger.info(
            f"{LOG_PREFIX} acquire_connection: key={pool.key} saturated "
            f"({pool.size}/{pool.max_size}), queued at position {len(pool.waiting)}"
        )

        try:
            connection = await waiter.future
        except asyncio.CancelledError:
            self._abandon_waiter(pool, waiter)
            raise
        finally:
            if waiter.timeout_handle:
                waiter.timeout_handle.cancel()

        if connection is None:
            # A slot was reserved for this waiter
            return await self._create_connection(pool, reserved=True)
        return connection

    def _process_waiters(self, pool: SocketPool) -> None:
        """Hand idle connections, then free slots, to waiters in FIFO order"""
        while pool.waiting and (pool.idle or pool.has_capacity()):
            waiter = pool.next_waiter()
            if waiter is None:
                break

            connection = self._take_live_idle(pool)
            if connection is not None:
                self._checkout(pool, connection)
                waiter.future.set_result(connection)
            elif pool.has_capacity():
                pool.pending_creations += 1
                waiter.future.set_result(None)
            else:
                pool.waiting.appendleft(waiter)
                break

            if waiter.timeout_handle:
                waiter.timeout_handle.cancel()

    def _expire_waiter(self, pool: SocketPool, waiter: Waiter, timeout: float) -> None:
        if not pool.discard_waiter(waiter) or waiter.future.done():
            return

        waiter.future.set_exception(
            AcquireTimeoutError(
                f"Timed out after {timeout}s waiting for a connection in pool {pool.key}"
            )
        )
        self._emit(SocketPoolEventType.QUEUE_TIMEOUT, pool.key, data={"timeout": timeout})
        logger.warning(
            f"{LOG_PREFIX} acquire_connection: key={pool.key} timed out after "
            f"{timeout}s in queue"
        )

    def _abandon_waiter(self, pool: SocketPool, waiter: Waiter) -> None:
        """Clean up after a waiter whose task was cancelled"""
        pool.discard_waiter(waiter)

        future = waiter.future
        if not future.done() or future.cancelled() or future.exception() is not None:
            return

        # Handed over just before the cancellation landed
        connection = future.result()
        if connection is None:
            pool.pending_creations -= 1
            self._process_waiters(pool)
        else:
            self.release_connection(connection)

    async def _disconnect(self, connection: PooledSocket) -> None:
        try:
            await connection.disconnect()
        except Exception as e:
            logger.warning(
                f"{LOG_PREFIX} failed to disconnect {connection.id} "
                f"({connection.pool_key}): {type(e).__name__}: {e}"
            )

    async def _metrics_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.metrics_interval_seconds)
            self.log_metrics()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval_seconds)
            try:
                await self.cleanup_idle_connections()
            except Exception as e:
                logger.error(f"{LOG_PREFIX} cleanup sweep failed: {type(e).__name__}: {e}")

    def _emit(
        self,
        event_type: SocketPoolEventType,
        pool_key: Optional[str] = None,
        connection_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit an event"""
        listeners = self._listeners.get(event_type)
        if not listeners:
            return

        event = SocketPoolEvent(
            type=event_type,
            timestamp=time.time(),
            pool_key=pool_key,
            connection_id=connection_id,
            data=data,
        )
        for listener in list(listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    f"{LOG_PREFIX} listener for {event_type.value} raised "
                    f"{type(e).__name__}: {e}"
                )
