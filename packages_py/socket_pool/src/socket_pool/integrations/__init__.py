"""FastAPI integration module."""
from .fastapi import (
    SocketPoolManagerDep,
    create_socket_pool_lifespan,
    create_socket_pool_router,
    get_socket_pool_manager,
)

__all__ = [
    "SocketPoolManagerDep",
    "create_socket_pool_lifespan",
    "create_socket_pool_router",
    "get_socket_pool_manager",
]
