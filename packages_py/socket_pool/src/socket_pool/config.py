"""
Configuration utilities for socket-pool
"""

import random
import time
import uuid
from dataclasses import replace
from functools import lru_cache
from typing import Any, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import ReconnectionConfig, SocketPoolConfig


PAYMENT_POOL_PREFIX = "payment"


# Default socket pool configuration
DEFAULT_SOCKET_POOL_CONFIG = SocketPoolConfig(
    max_size=5,
    min_connections=2,
    connection_timeout_seconds=10.0,
    idle_timeout_seconds=30.0,
    cleanup_interval_seconds=60.0,
    metrics_interval_seconds=10.0,
    queue_timeout_seconds=30.0,
    max_queue_size=1000,
    reconnection=ReconnectionConfig(
        max_attempts=3,
        base_delay_seconds=1.0,
        max_delay_seconds=5.0,
        jitter_seconds=1.0,
    ),
)


def merge_config(
    config: Optional[SocketPoolConfig] = None, **overrides: Any
) -> SocketPoolConfig:
    """
    Build a config from a base config (the defaults when None) with field
    overrides applied. Always returns a new object; the base is never mutated.

    Example:
        merge_config(max_size=1, min_connections=0)
    """
    base = config if config is not None else DEFAULT_SOCKET_POOL_CONFIG
    overrides.setdefault("reconnection", replace(base.reconnection))
    return replace(base, **overrides)


def validate_config(config: SocketPoolConfig) -> list[str]:
    """Validate configuration values"""
    errors = []

    if config.max_size < 1:
        errors.append("max_size must be at least 1")

    if config.min_connections < 0:
        errors.append("min_connections must be non-negative")

    if config.connection_timeout_seconds < 0:
        errors.append("connection_timeout_seconds must be non-negative")

    if config.idle_timeout_seconds < 0:
        errors.append("idle_timeout_seconds must be non-negative")

    if config.cleanup_interval_seconds <= 0:
        errors.append("cleanup_interval_seconds must be positive")

    if config.metrics_interval_seconds <= 0:
        errors.append("metrics_interval_seconds must be positive")

    if config.queue_timeout_seconds < 0:
        errors.append("queue_timeout_seconds must be non-negative")

    if config.max_queue_size < 0:
        errors.append("max_queue_size must be non-negative")

    reconnection = config.reconnection
    if reconnection.max_attempts < 0:
        errors.append("reconnection.max_attempts must be non-negative")

    if reconnection.base_delay_seconds < 0:
        errors.append("reconnection.base_delay_seconds must be non-negative")

    if reconnection.jitter_seconds < 0:
        errors.append("reconnection.jitter_seconds must be non-negative")

    # Cross-field validations
    if reconnection.max_delay_seconds < reconnection.base_delay_seconds:
        errors.append("reconnection.max_delay_seconds cannot be below base_delay_seconds")

    return errors


def get_payment_pool_key(payment_id: str) -> str:
    """Generate the pool key for a payment session"""
    if not payment_id:
        raise ValueError("payment_id is required")
    return f"{PAYMENT_POOL_PREFIX}:{payment_id}"


def parse_pool_key(pool_key: str) -> Tuple[str, str]:
    """Split a pool key into its namespace and identifier"""
    namespace, sep, identifier = pool_key.partition(":")
    if not sep or not namespace or not identifier:
        raise ValueError(f"Invalid pool key: {pool_key}")
    return namespace, identifier


def generate_connection_id() -> str:
    """Generate a unique connection ID"""
    return f"sock-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def calculate_reconnect_delay(attempt: int, reconnection: ReconnectionConfig) -> float:
    """
    Calculate the delay before a transport reconnect attempt.

    Exponential backoff with additive jitter:
    delay = min(max_delay, base * 2^attempt + random(0, jitter))

    Args:
        attempt: The retry number (0-indexed)
        reconnection: Reconnection bounds

    Returns:
        Delay in seconds
    """
    exponential_delay = reconnection.base_delay_seconds * (2 ** attempt)
    jitter_amount = random.random() * reconnection.jitter_seconds
    return min(exponential_delay + jitter_amount, reconnection.max_delay_seconds)


class SocketPoolSettings(BaseSettings):
    """Socket pool settings loaded from SOCKET_POOL_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="SOCKET_POOL_", env_file=None)

    # Pool
    max_size: int = 5
    min_connections: int = 2
    connection_timeout_seconds: float = 10.0
    idle_timeout_seconds: float = 30.0
    cleanup_interval_seconds: float = 60.0
    metrics_interval_seconds: float = 10.0
    queue_timeout_seconds: float = 30.0
    max_queue_size: int = 1000

    # Transport reconnection
    reconnect_max_attempts: int = 3
    reconnect_base_delay_seconds: float = 1.0
    reconnect_max_delay_seconds: float = 5.0
    reconnect_jitter_seconds: float = 1.0

    # Transport endpoint
    url: Optional[str] = None
    token: Optional[str] = None
    user_id: Optional[str] = None

    def to_config(self) -> SocketPoolConfig:
        """Build a SocketPoolConfig from these settings"""
        return SocketPoolConfig(
            max_size=self.max_size,
            min_connections=self.min_connections,
            connection_timeout_seconds=self.connection_timeout_seconds,
            idle_timeout_seconds=self.idle_timeout_seconds,
            cleanup_interval_seconds=self.cleanup_interval_seconds,
            metrics_interval_seconds=self.metrics_interval_seconds,
            queue_timeout_seconds=self.queue_timeout_seconds,
            max_queue_size=self.max_queue_size,
            reconnection=ReconnectionConfig(
                max_attempts=self.reconnect_max_attempts,
                base_delay_seconds=self.reconnect_base_delay_seconds,
                max_delay_seconds=self.reconnect_max_delay_seconds,
                jitter_seconds=self.reconnect_jitter_seconds,
            ),
        )


@lru_cache()
def get_socket_pool_settings() -> SocketPoolSettings:
    """Get cached settings instance."""
    return SocketPoolSettings()
