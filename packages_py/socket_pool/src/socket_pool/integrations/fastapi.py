"""
FastAPI integration for the socket pool manager.

Provides lifespan management, dependency injection helpers, and a metrics endpoint.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncGenerator, Callable

try:
    from fastapi import APIRouter, Depends, FastAPI, Request
except ImportError:
    raise ImportError("FastAPI is required for this module. Install with: pip install fastapi")

from ..manager import SocketPoolManager


STATE_ATTR = "socket_pool_manager"


def create_socket_pool_lifespan(
    manager_factory: Callable[[], SocketPoolManager],
) -> Callable[[FastAPI], Any]:
    """
    Create a FastAPI lifespan context manager for a socket pool manager.

    The manager is built and started on startup, stored on
    ``app.state.socket_pool_manager``, and closed on shutdown.

    Args:
        manager_factory: Builds the manager, e.g. ``create_socket_pool_from_settings``.

    Returns:
        Async context manager function for FastAPI lifespan.

    Usage:
        from fastapi import FastAPI
        from socket_pool import create_socket_pool_from_settings
        from socket_pool.integrations import create_socket_pool_lifespan

        app = FastAPI(lifespan=create_socket_pool_lifespan(create_socket_pool_from_settings))
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        manager = manager_factory()
        manager.start()
        setattr(app.state, STATE_ATTR, manager)
        try:
            yield
        finally:
            await manager.close()

    return lifespan


def get_socket_pool_manager(request: Request) -> SocketPoolManager:
    """
    FastAPI dependency returning the application's socket pool manager.

    Usage:
        @app.post("/payments/{payment_id}/notify")
        async def notify(payment_id: str, manager: SocketPoolManagerDep):
            async with manager.connection(get_payment_pool_key(payment_id)) as conn:
                await conn.socket.send("...")
    """
    manager = getattr(request.app.state, STATE_ATTR, None)
    if manager is None:
        raise RuntimeError(
            "Socket pool manager is not initialized; use create_socket_pool_lifespan"
        )
    return manager


# Type alias for cleaner FastAPI dependency injection
SocketPoolManagerDep = Annotated[SocketPoolManager, Depends(get_socket_pool_manager)]


def create_socket_pool_router(prefix: str = "/socket-pool") -> APIRouter:
    """Create a router exposing pool metrics at ``GET {prefix}/metrics``"""
    router = APIRouter(prefix=prefix)

    @router.get("/metrics")
    async def socket_pool_metrics(manager: SocketPoolManagerDep) -> dict[str, Any]:
        metrics = manager.get_pool_metrics().to_dict()
        metrics["running"] = manager.is_running
        return metrics

    return router
